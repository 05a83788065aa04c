"""
Crisis engine error taxonomy.

Pure components (score calculator, rule decisions) never raise; everything
here comes from operations that touch storage or enforce a state machine.
"""

from typing import Optional
from uuid import UUID


class CrisisError(Exception):
    """Base class for crisis engine errors."""

    retryable: bool = False


class CrisisStorageError(CrisisError):
    """A read or write against the data store failed."""

    retryable = True

    def __init__(self, message: str, couple_id: Optional[UUID] = None):
        super().__init__(message)
        self.couple_id = couple_id


class AlreadyResolvedError(CrisisError):
    """The record has already reached a terminal state."""

    def __init__(self, kind: str, record_id: UUID):
        super().__init__(f"{kind} {record_id} is already resolved")
        self.kind = kind
        self.record_id = record_id


class CoolingOffActiveError(CrisisError):
    """A cooling-off period is already running for the couple."""

    def __init__(self, couple_id: UUID, period_id: Optional[UUID] = None):
        super().__init__(f"Couple {couple_id} already has an active cooling-off period")
        self.couple_id = couple_id
        self.period_id = period_id


class RecordNotFoundError(CrisisError):
    """Lookup by id found nothing."""

    def __init__(self, kind: str, record_id: UUID):
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class CoupleNotFoundError(RecordNotFoundError):
    def __init__(self, couple_id: UUID):
        super().__init__("Couple", couple_id)
        self.couple_id = couple_id
