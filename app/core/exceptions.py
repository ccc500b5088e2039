"""
Error taxonomy for the visit lifecycle engine.

All of these are local, non-fatal failures. They are raised from the
engine and the location ledger and converted to structured 4xx responses
by the handlers registered in ``app.main``.
"""
from typing import Optional


class VisitEngineError(Exception):
    code = "engine_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": self.code}


class InvalidTransitionError(VisitEngineError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, attempted: str, message: Optional[str] = None):
        self.current = current
        self.attempted = attempted
        super().__init__(
            message or f"Cannot {attempted} a visit that is {current}"
        )

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["current_status"] = self.current
        body["attempted"] = self.attempted
        return body


class ValidationError(VisitEngineError):
    code = "validation_error"
    status_code = 400


class AuthorizationError(VisitEngineError):
    code = "not_authorized"
    status_code = 403


class ConflictError(VisitEngineError):
    code = "conflict"
    status_code = 409


class NotFoundError(VisitEngineError):
    code = "not_found"
    status_code = 404
