"""Domain errors raised by the visibility, approval and audit services."""

from __future__ import annotations

# purpose: give services a typed error vocabulary that routes translate into HTTP responses
# status: active


class EngineError(Exception):
    """Base class for recoverable engine errors surfaced at the API boundary."""

    status_code = 400
    kind = "engine_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def payload(self) -> dict:
        return {"detail": self.message, "error": self.kind}


class PermissionDenied(EngineError):
    status_code = 403
    kind = "permission_denied"

    def __init__(self, message: str = "Not authorized") -> None:
        super().__init__(message)


class NotFound(EngineError):
    status_code = 404
    kind = "not_found"


class ValidationError(EngineError):
    status_code = 400
    kind = "validation_error"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    def payload(self) -> dict:
        body = super().payload()
        if self.field:
            body["field"] = self.field
        return body


class InvalidStateTransition(EngineError):
    status_code = 409
    kind = "invalid_state_transition"

    def __init__(self, message: str, *, current_status: str | None = None) -> None:
        super().__init__(message)
        self.current_status = current_status

    def payload(self) -> dict:
        body = super().payload()
        body["current_status"] = self.current_status
        return body


class DeletionBlocked(EngineError):
    """Asset still has platform usage or download history attached."""

    status_code = 409
    kind = "deletion_blocked"


class ImmutableViolation(EngineError):
    """An update or delete was attempted against the audit ledger."""

    status_code = 409
    kind = "immutable_violation"

    def __init__(self, message: str = "Audit logs are immutable") -> None:
        super().__init__(message)
