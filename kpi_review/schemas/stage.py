from pydantic import BaseModel
from typing import List, Optional
import enum

from kpi_review.models.kpi_review import ReviewStatus, RejectionResolvedStatus
from kpi_review.schemas.calculation_config import CalculationMethod
from kpi_review.schemas.review import AllowedAction


class StageCategory(str, enum.Enum):
    SETTING = "setting"
    REVIEW_PENDING = "review_pending"
    SELF_RATING_REQUIRED = "self_rating_required"
    AWAITING_MANAGER = "awaiting_manager"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMPLETED = "completed"
    REJECTED = "rejected"
    RESOLVED = "resolved"


class StageInfo(BaseModel):
    label: str
    category: StageCategory


class StageResponse(BaseModel):
    kpi_id: int
    review_id: Optional[int] = None
    stage: StageInfo
    review_status: ReviewStatus
    rejection_resolved_status: RejectionResolvedStatus = RejectionResolvedStatus.NONE
    calculation_method: CalculationMethod
    self_rating_enabled: bool
    allowed_actions: List[AllowedAction] = []


class StageCounts(BaseModel):
    total_kpis: int = 0
    setting: int = 0
    review_pending: int = 0
    self_rating_required: int = 0
    awaiting_manager: int = 0
    awaiting_confirmation: int = 0
    completed: int = 0
    rejected: int = 0
    resolved: int = 0
