from pydantic import BaseModel, ConfigDict, field_validator
from typing import Dict, List, Optional

from kpi_review.models.item_rating import RaterRole
from kpi_review.models.kpi import QualitativeRating
from kpi_review.schemas.calculation_config import CalculationMethod
from kpi_review.schemas.kpi import coerce_number, parse_goal_weight


class ItemRatingSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    kpi_review_id: Optional[int] = None
    kpi_item_id: int
    rater_role: RaterRole
    rating_value: Optional[float] = None
    qualitative_rating: Optional[QualitativeRating] = None
    comment: Optional[str] = None
    actual_value: Optional[float] = None
    target_value: Optional[float] = None
    goal_weight: Optional[float] = None
    percentage_value_obtained: Optional[float] = None
    manager_rating_percentage: Optional[float] = None

    @field_validator(
        "rating_value", "actual_value", "target_value",
        "percentage_value_obtained", "manager_rating_percentage",
        mode="before",
    )
    @classmethod
    def _number(cls, v):
        return coerce_number(v)

    @field_validator("goal_weight", mode="before")
    @classmethod
    def _goal_weight(cls, v):
        return parse_goal_weight(v)


class ItemContribution(BaseModel):
    kpi_item_id: int
    rating_value: float = 0.0
    goal_weight: Optional[float] = None
    contribution: float = 0.0
    percentage_value_obtained: Optional[float] = None
    manager_rating_percentage: Optional[float] = None


class AggregationResult(BaseModel):
    method: CalculationMethod
    rater_role: RaterRole
    per_item: Dict[int, float] = {}
    total: float = 0.0
    total_weight: float = 0.0
    eligible_items: int = 0
    # All-qualitative (or empty) KPI: total is 0 by definition, not an error
    degenerate: bool = False
    breakdown: List[ItemContribution] = []


class RatingOption(BaseModel):
    rating_value: float
    label: str
    rating_type: str


class NormalizedRating(BaseModel):
    raw_value: float
    normalized_value: float
    label: str
