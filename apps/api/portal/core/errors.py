"""Domain exceptions raised by the service layer and mapped to HTTP by routers."""


class PortalError(Exception):
    """Base class for portal errors."""


class AuthenticationError(PortalError):
    """No valid session at call time."""

    def __init__(self, message: str = "No active session found"):
        super().__init__(message)


# =============================================================================
# Object store
# =============================================================================

class StorageError(PortalError):
    """Object store rejected a request or could not be reached."""


class UploadError(StorageError):
    """A single upload failed (network, authorization, or store-side rejection)."""


class FolderNotEmptyError(StorageError):
    """Folder marker removal refused because objects are still visible under it."""


# =============================================================================
# Record store
# =============================================================================

class RecordWriteError(PortalError):
    """Insert, update, or delete against the relational store failed."""


class RecordNotFoundError(PortalError):
    """Row does not exist or is not owned by the caller."""


class VersionConflictError(PortalError):
    """Raised when expected_version doesn't match current version."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Version conflict: expected {expected}, got {actual}")
