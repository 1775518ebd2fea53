"""Enum definitions for application constants."""

from enum import Enum


class CaseCategory(str, Enum):
    MEDICAL = "medical"
    EDUCATION = "education"
    FOOD = "food"
    SHELTER = "shelter"
    OTHER = "other"


class UrgencyLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CaseStatus(str, Enum):
    """
    Case lifecycle.

    - ACTIVE: visible to donors, raising funds
    - PENDING: awaiting review
    - FULFILLED: required amount raised
    - CLOSED: withdrawn by the caretaker
    """
    ACTIVE = "active"
    PENDING = "pending"
    FULFILLED = "fulfilled"
    CLOSED = "closed"


class ProfileRole(str, Enum):
    """Account role stored on the base profile row."""
    CARETAKER = "caretaker"
    WIDOW = "widow"
    ORPHAN = "orphan"
    DONOR = "donor"


class NeedyRole(str, Enum):
    """Role tag that decides which document slots a needy profile carries."""
    WIDOW = "widow"
    ORPHAN = "orphan"


DEFAULT_CASE_STATUS = CaseStatus.ACTIVE
