"""Exceptions raised by the allocation core.

ValidationError and ConflictError subclasses are raised before any state is
touched, so the caller may adjust and retry. InvariantViolation signals a defect.
"""

from typing import Optional


class AllocationError(Exception):
    """Base exception for allocation errors"""
    pass


class ValidationError(AllocationError):
    """Raised when input is malformed (negative quantity, blank key)"""
    pass


class ConflictError(AllocationError):
    """Raised when a well-formed request conflicts with the current pool state"""
    pass


class InsufficientPoolQuantity(ConflictError):
    """Raised when the pool holds less than requested"""
    def __init__(self, item_number: str, available: int, requested: int):
        self.item_number = item_number
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient pool quantity for {item_number}. "
            f"Available: {available}, Requested: {requested}"
        )


class InsufficientLocationQuantity(ConflictError):
    """Raised when a location holds less than requested"""
    def __init__(self, item_number: str, location: str, available: int, requested: int):
        self.item_number = item_number
        self.location = location
        self.available = available
        self.requested = requested
        super().__init__(
            f"Location {location} holds {available} of {item_number}, "
            f"cannot return {requested}"
        )


class UnknownLocation(ConflictError):
    """Raised when a location is missing (or inactive, for allocation)"""
    def __init__(self, location: str, inactive: bool = False):
        self.location = location
        self.inactive = inactive
        reason = "is inactive" if inactive else "does not exist"
        super().__init__(f"Location {location} {reason}")


class StaleDeactivationRecord(ConflictError):
    """Raised when a deactivation record was already undone or is no longer pending"""
    def __init__(self, location: str, record_id: str):
        self.location = location
        self.record_id = record_id
        super().__init__(
            f"Deactivation of {location} (record {record_id}) is no longer pending"
        )


class InvariantViolation(AllocationError):
    """Raised when the conservation law is broken. This is a defect, not user error."""
    def __init__(self, item_number: str, baseline: int, actual: int):
        self.item_number = item_number
        self.baseline = baseline
        self.actual = actual
        super().__init__(
            f"Conservation violated for {item_number}: "
            f"expected {baseline}, found {actual}"
        )


class EmptyPoolError(AllocationError):
    """Raised when there is nothing allocated to archive"""
    pass


class AtomicFailure(AllocationError):
    """Raised when persistence I/O fails during archive or restore"""
    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} failed, no state was changed{detail}")


class OperationCancelled(AllocationError):
    """Raised when a cancellable operation observed its cancellation signal"""
    pass


class ArchiveNotFoundError(AllocationError):
    """Raised when an archive id is not known to the store"""
    def __init__(self, archive_id: str):
        self.archive_id = archive_id
        super().__init__(f"Archive {archive_id} not found")
