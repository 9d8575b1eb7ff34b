"""
Domain errors

Services raise these; the handlers registered in main.py render them as
{"error": {"code": ..., "message": ..., "issues": [...]}}.
"""

from typing import Optional


class AppError(Exception):
    """Base class for errors that map onto the API error taxonomy"""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, issues: Optional[list] = None):
        super().__init__(message)
        self.message = message
        self.issues = issues

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.issues:
            body["issues"] = self.issues
        return {"error": body}


class ValidationFailed(AppError):
    """Malformed or out-of-range input"""

    code = "VALIDATION_ERROR"
    status_code = 400


class UnauthorizedError(AppError):
    """Missing or invalid credentials"""

    code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(AppError):
    """Authenticated but not entitled"""

    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(AppError):
    """Referenced entity does not exist"""

    code = "NOT_FOUND"
    status_code = 404


class BusinessError(AppError):
    """State-machine or domain rule violation"""

    code = "BUSINESS_ERROR"
    status_code = 400


class ConflictError(AppError):
    """Slot already taken or duplicate resource"""

    code = "CONFLICT"
    status_code = 409


class InvalidTransitionError(BusinessError):
    """Raised when an appointment status change is not allowed"""

    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid status transition from {current} to {target}")
        self.current = current
        self.target = target


class InvalidSignatureError(BusinessError):
    """Raised when a gateway callback fails signature verification"""

    pass


def format_validation_issues(errors: list[dict]) -> list[dict]:
    """Reduce pydantic error dicts to JSON-safe {loc, msg, type} entries"""
    return [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in errors
    ]
