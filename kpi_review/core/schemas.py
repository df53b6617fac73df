from typing import Any, Dict, Generic, List, Optional, TypeVar
from pydantic import BaseModel, Field
from datetime import datetime, timezone

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope. Errors never use it; see error_body."""
    success: bool = True
    data: Optional[T] = None
    metadata: Dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def ok(cls, data: T, metadata: Optional[Dict[str, Any]] = None, notices: Optional[List[Any]] = None) -> "ApiResponse[T]":
        metadata = dict(metadata or {})
        if notices:
            metadata["notices"] = [n.to_dict() for n in notices]
        return cls(success=True, data=data, metadata=metadata)


def error_body(errors: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"success": False, "errors": errors}
