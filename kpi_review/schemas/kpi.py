import math
from pydantic import BaseModel, ConfigDict, field_validator
from typing import Any, List, Optional
from datetime import datetime

from kpi_review.models.kpi import Period, KPIStatus, QualitativeRating


def coerce_number(value: Any) -> Optional[float]:
    """Best-effort float conversion; blanks and junk become None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%").strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_goal_weight(value: Any) -> Optional[float]:
    """
    Goal weights arrive as fractions (0.3), whole percent numbers (30) or
    percent strings ("30%"). Other values above 1, such as 1.5, are returned
    unchanged for the caller to reject.
    """
    is_percent_string = isinstance(value, str) and value.strip().endswith("%")
    number = coerce_number(value)
    if number is None:
        return None
    if is_percent_string or (number > 1 and number.is_integer()):
        return number / 100
    return number


class KPIItemSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    kpi_id: Optional[int] = None
    title: str = ""
    description: Optional[str] = None
    target_value: Optional[float] = None
    actual_value: Optional[float] = None
    measure_unit: Optional[str] = None
    goal_weight: Optional[float] = None
    is_qualitative: bool = False
    qualitative_rating: Optional[QualitativeRating] = None

    @field_validator("target_value", "actual_value", mode="before")
    @classmethod
    def _number(cls, v):
        return coerce_number(v)

    @field_validator("goal_weight", mode="before")
    @classmethod
    def _goal_weight(cls, v):
        return parse_goal_weight(v)

    @field_validator("is_qualitative", mode="before")
    @classmethod
    def _qualitative_flag(cls, v):
        return bool(v)


class KPISchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    employee_id: int
    manager_id: int
    department_id: Optional[int] = None
    title: str = ""
    description: Optional[str] = None
    period: Period = Period.QUARTERLY
    quarter: Optional[str] = None
    year: int
    status: KPIStatus = KPIStatus.PENDING
    employee_signature: Optional[str] = None
    manager_signature: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    items: List[KPIItemSchema] = []

    @property
    def numeric_items(self) -> List[KPIItemSchema]:
        return [item for item in self.items if not item.is_qualitative]
