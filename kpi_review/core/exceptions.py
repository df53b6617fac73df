from typing import Any, Dict, Optional


class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"msg": self.message, "code": self.error_code, "details": self.details or {}}


class ValidationError(AppException):
    """A submission failed a guard precondition. No state was changed."""
    def __init__(self, message: str, field: str, **context: Any):
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_FAILED",
            details={"field": field, **context}
        )
        self.field = field


class StateConflictError(AppException):
    """The stored review state no longer matches what the caller expected."""
    def __init__(self, action: str, expected: Any, actual: Any, message: Optional[str] = None):
        super().__init__(
            message=message or f"Cannot {action}: review is '{actual}', expected '{expected}'",
            status_code=409,
            error_code="STATE_CONFLICT",
            details={"action": action, "expected": expected, "actual": actual}
        )
        self.action = action
        self.expected = expected
        self.actual = actual


class NotFoundError(AppException):
    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            message=f"{entity.replace('_', ' ').capitalize()} {entity_id} not found",
            status_code=404,
            error_code=f"{entity.upper()}_NOT_FOUND",
            details={"entity": entity, "id": entity_id}
        )


class ConfigurationDefaultedWarning(UserWarning):
    """
    Non-blocking notice: no calculation config is stored for the department,
    so the default config was used. Collected and returned to the caller,
    never raised.
    """
    code = "CONFIGURATION_DEFAULTED"

    def __init__(self, department_id: Optional[int], period: str):
        self.department_id = department_id
        self.period = period
        super().__init__(
            f"No calculation settings stored for department {department_id} ({period}); using defaults"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "msg": str(self),
            "details": {"department_id": self.department_id, "period": self.period},
        }
