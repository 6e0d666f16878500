"""Errors raised by the revenue services.

The API layer maps these to HTTP status codes; services never raise
HTTPException themselves.
"""


class RevenueEngineError(Exception):
    """Base class for revenue engine errors."""


class RecordNotFoundError(RevenueEngineError):
    """A referenced record does not exist for the organization."""

    def __init__(self, record_type: str, record_id: str | None = None) -> None:
        self.record_type = record_type
        self.record_id = record_id
        if record_id:
            message = f"{record_type} {record_id} not found"
        else:
            message = f"No {record_type} found"
        super().__init__(message)


class InvalidTransitionError(RevenueEngineError):
    """A lifecycle action is not legal from the record's current status."""

    def __init__(self, record_type: str, from_status: str, action: str) -> None:
        self.record_type = record_type
        self.from_status = from_status
        self.action = action
        super().__init__(f"Cannot {action} {record_type} in status '{from_status}'")


class NothingToImplementError(RevenueEngineError):
    """None of the requested fee analyses are approved."""

    def __init__(self) -> None:
        super().__init__("No approved fee analyses to implement")


class InvalidWindowError(RevenueEngineError, ValueError):
    """An analysis window starts after it ends."""

    def __init__(self, start_date, end_date) -> None:
        super().__init__(f"Analysis window start {start_date} is after end {end_date}")
