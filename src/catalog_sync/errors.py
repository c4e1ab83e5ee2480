"""Error taxonomy for the synchronization engine."""

from typing import Any


class SyncError(Exception):
    """Base class for all synchronization errors."""

    pass


class ConfigurationError(SyncError):
    """Raised when configuration is invalid or missing."""

    pass


class TransientTransportError(SyncError):
    """Network failure, timeout or 5xx from the target platform. Retryable."""

    pass


class ThrottleStatus:
    """Bucket state reported by the target platform alongside a response."""

    def __init__(
        self,
        currently_available: float,
        restore_rate: float,
        maximum_available: float | None = None,
        requested_cost: float | None = None,
    ):
        self.currently_available = currently_available
        self.restore_rate = restore_rate
        self.maximum_available = maximum_available
        self.requested_cost = requested_cost

    @classmethod
    def from_extensions(cls, extensions: dict[str, Any] | None) -> "ThrottleStatus | None":
        """
        Parse the ``cost`` block of a GraphQL ``extensions`` payload.

        Returns None when the payload carries no throttle detail.
        """
        if not isinstance(extensions, dict):
            return None
        cost = extensions.get("cost")
        if not isinstance(cost, dict):
            return None
        status = cost.get("throttleStatus")
        if not isinstance(status, dict):
            return None
        try:
            return cls(
                currently_available=float(status.get("currentlyAvailable") or 0),
                restore_rate=float(status.get("restoreRate") or 0) or 100.0,
                maximum_available=(
                    float(status["maximumAvailable"])
                    if status.get("maximumAvailable") is not None
                    else None
                ),
                requested_cost=(
                    float(cost["requestedQueryCost"])
                    if cost.get("requestedQueryCost") is not None
                    else None
                ),
            )
        except (TypeError, ValueError):
            return None

    def __repr__(self) -> str:
        return (
            f"ThrottleStatus(currently_available={self.currently_available}, "
            f"restore_rate={self.restore_rate})"
        )


class ThrottledError(TransientTransportError):
    """The target platform rejected a call because the rate budget is spent."""

    def __init__(self, message: str = "Throttled", status: ThrottleStatus | None = None):
        super().__init__(message)
        self.status = status


class ThrottleExhaustedError(SyncError):
    """Throttling persisted through every permitted retry."""

    def __init__(self, attempts: int, last_error: ThrottledError | None = None):
        super().__init__(f"Call still throttled after {attempts} attempts")
        self.attempts = attempts
        self.last_error = last_error


class TargetApiError(SyncError):
    """Non-retryable error returned by the target platform API."""

    pass


class ValidationError(SyncError):
    """The target platform rejected a payload with user errors."""

    def __init__(self, message: str, user_errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.user_errors = user_errors or []

    @classmethod
    def from_user_errors(cls, action: str, user_errors: list[dict[str, Any]]) -> "ValidationError":
        first = user_errors[0] if user_errors else {}
        message = first.get("message", "unknown validation error")
        field = first.get("field")
        if field:
            message = f"{field}: {message}"
        return cls(f"Failed to {action}: {message}", user_errors)


class MissingReferenceError(SyncError):
    """A foreign reference points at an entity that has no mapping yet."""

    def __init__(self, kind: Any, external_id: str, field_key: str | None = None):
        kind_name = getattr(kind, "value", kind)
        where = f" in field '{field_key}'" if field_key else ""
        super().__init__(f"No {kind_name} mapping for external id '{external_id}'{where}")
        self.kind = kind
        self.external_id = external_id
        self.field_key = field_key


class MappingIntegrityError(SyncError):
    """An upsert would break a uniqueness invariant of the mapping store."""

    pass


class FetchError(SyncError):
    """Enumerating source or target records failed."""

    pass


class SyncCancelledError(SyncError):
    """The run was cancelled before a mutation was issued."""

    pass
