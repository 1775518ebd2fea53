"""Compensating-action runner for mutations that span the object store and the database.

The two stores share no transaction. A mutation runs inside a `Saga`:

    async with Saga("case.update", case_id=...) as saga:
        media = MediaBatch(saga, store, credential, folder)
        new = await media.upload(source, "case-image")   # rollback: delete new
        media.retire(old_public_id)                       # after success: delete old
        write_row(...)

If the block raises, compensations run newest-first and the original error
propagates. If it completes, deferred cleanups run concurrently. Failures
in either path are logged and collected in `saga.warnings`; they never
replace the primary outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Sequence

import anyio

from portal.core.structured_logging import build_log_context
from portal.services.object_store import ObjectStore, UploadResult
from portal.utils.file_upload import UploadSource

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class Compensation:
    description: str
    action: Action


@dataclass
class Saga:
    name: str
    user_id: str | None = None
    case_id: str | None = None
    compensations: list[Compensation] = field(default_factory=list)
    deferred: list[Compensation] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    succeeded: bool | None = None

    @property
    def log_context(self) -> dict:
        return build_log_context(user_id=self.user_id, case_id=self.case_id, operation=self.name)

    def add_compensation(self, description: str, action: Action) -> None:
        """Register an undo step; runs only if the saga fails."""
        self.compensations.append(Compensation(description, action))

    def on_success(self, description: str, action: Action) -> None:
        """Register a cleanup step; runs only after the saga succeeds."""
        self.deferred.append(Compensation(description, action))

    async def _attempt(self, step: Compensation, phase: str) -> None:
        try:
            await step.action()
        except Exception as exc:
            self.warnings.append(f"{step.description}: {exc}")
            logger.warning(
                "%s %s failed: %s", self.name, phase, step.description,
                exc_info=exc, extra=self.log_context,
            )

    async def rollback(self) -> None:
        for step in reversed(self.compensations):
            await self._attempt(step, "rollback")
        self.compensations.clear()

    async def run_deferred(self) -> None:
        async with anyio.create_task_group() as tg:
            for step in self.deferred:
                tg.start_soon(self._attempt, step, "cleanup")
        self.deferred.clear()

    async def __aenter__(self) -> "Saga":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc is None:
            self.succeeded = True
            await self.run_deferred()
            return False

        self.succeeded = False
        logger.info(
            "%s failed, running %d compensation(s)", self.name, len(self.compensations),
            extra=self.log_context,
        )
        await self.rollback()
        return False


@dataclass(frozen=True)
class _UploadOutcome:
    result: UploadResult | None = None
    error: BaseException | None = None


class MediaBatch:
    """
    Uploads into one folder under a saga, one or many documents at a time.

    Every object uploaded here is deleted again if the saga fails, unless
    `rollback_by_prefix()` registered a single folder-wide delete instead.
    Objects passed to `retire()` are deleted only after the saga succeeds.
    Callers upload under keys that differ from the ones they retire.
    """

    def __init__(
        self,
        saga: Saga,
        store: ObjectStore,
        credential: str | None,
        folder: str,
    ):
        self.saga = saga
        self.store = store
        self.credential = credential
        self.folder = folder.strip("/")
        self.uploaded: list[UploadResult] = []
        self.retired: list[str] = []
        self._per_object_rollback = True

    def rollback_by_prefix(self) -> None:
        """Undo this batch with one delete of everything under the folder."""
        prefix = f"{self.folder}/"
        self._per_object_rollback = False

        async def _delete_folder() -> None:
            await self.store.delete_by_prefix(self.credential, prefix)

        self.saga.add_compensation(f"delete objects under {prefix}", _delete_folder)

    def _track(self, result: UploadResult) -> None:
        self.uploaded.append(result)
        if not self._per_object_rollback:
            return

        async def _delete_new() -> None:
            await self.store.delete(self.credential, result.public_id)

        self.saga.add_compensation(f"delete new object {result.public_id}", _delete_new)

    async def upload(self, source: UploadSource, base_name: str) -> UploadResult:
        result = await self.store.upload(self.credential, source, base_name, self.folder)
        self._track(result)
        return result

    async def upload_many(
        self, items: Sequence[tuple[UploadSource, str]]
    ) -> list[UploadResult]:
        """
        Upload concurrently and wait for every upload to finish.

        Successful uploads are tracked before the first failure is re-raised,
        so the saga's rollback sees all of them. Results keep input order.
        """
        outcomes: list[_UploadOutcome | None] = [None] * len(items)

        async def _one(index: int, source: UploadSource, base_name: str) -> None:
            try:
                result = await self.store.upload(self.credential, source, base_name, self.folder)
            except Exception as exc:
                outcomes[index] = _UploadOutcome(error=exc)
            else:
                outcomes[index] = _UploadOutcome(result=result)

        async with anyio.create_task_group() as tg:
            for index, (source, base_name) in enumerate(items):
                tg.start_soon(_one, index, source, base_name)

        first_error: BaseException | None = None
        results: list[UploadResult] = []
        for outcome in outcomes:
            if outcome.result is not None:
                self._track(outcome.result)
                results.append(outcome.result)
            elif first_error is None:
                first_error = outcome.error
        if first_error is not None:
            raise first_error
        return results

    def retire(self, public_id: str | None) -> None:
        """Delete a pre-existing object after success."""
        if not public_id or public_id in self.retired:
            return
        self.retired.append(public_id)

        async def _delete_old() -> None:
            await self.store.delete(self.credential, public_id)

        self.saga.on_success(f"delete replaced object {public_id}", _delete_old)
