from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional
from datetime import date, datetime
import enum

from kpi_review.models.kpi import QualitativeRating
from kpi_review.models.kpi_review import ReviewStatus, RejectionResolvedStatus
from kpi_review.schemas.kpi import coerce_number, parse_goal_weight
from kpi_review.schemas.rating import ItemRatingSchema


class ConfirmationAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"

    @classmethod
    def _missing_(cls, value):
        aliases = {"approved": cls.APPROVE, "rejected": cls.REJECT}
        if isinstance(value, str):
            return aliases.get(value.strip().lower())
        return None


class ReviewAction(str, enum.Enum):
    OPEN_REVIEW = "open_review"
    SUBMIT_SELF_RATING = "submit_self_rating"
    SUBMIT_MANAGER_RATING = "submit_manager_rating"
    APPROVE = "approve"
    REJECT = "reject"
    RESOLVE_REJECTION = "resolve_rejection"


class ActorRole(str, enum.Enum):
    EMPLOYEE = "employee"
    MANAGER = "manager"
    HR = "hr"


class AccomplishmentSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    title: Optional[str] = None
    description: Optional[str] = None
    employee_rating: Optional[float] = None
    item_order: Optional[int] = None

    @field_validator("employee_rating", mode="before")
    @classmethod
    def _number(cls, v):
        return coerce_number(v)


class KPIReviewSchema(BaseModel):
    """
    Canonical review record. Older payloads name the state field `status`
    and use `awaiting_employee_confirmation`; both are folded in here.
    """
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: Optional[int] = None
    kpi_id: int
    employee_id: int
    manager_id: int
    review_status: ReviewStatus = Field(
        default=ReviewStatus.PENDING,
        validation_alias=AliasChoices("review_status", "status"),
    )

    employee_rating: Optional[float] = None
    employee_final_rating: Optional[float] = None
    employee_comment: Optional[str] = None
    employee_signature: Optional[str] = None
    self_review_date: Optional[date] = None
    major_accomplishments: Optional[str] = None
    disappointments: Optional[str] = None
    improvement_needed: Optional[str] = None
    future_plan: Optional[str] = None
    employee_submitted_at: Optional[datetime] = None

    manager_rating: Optional[float] = None
    manager_final_rating: Optional[float] = None
    manager_comment: Optional[str] = None
    manager_signature: Optional[str] = None
    manager_submitted_at: Optional[datetime] = None

    employee_confirmation_signature: Optional[str] = None
    employee_confirmed_at: Optional[datetime] = None
    employee_rejection_note: Optional[str] = None

    rejection_resolved_status: RejectionResolvedStatus = RejectionResolvedStatus.NONE
    rejection_resolved_note: Optional[str] = None
    rejection_resolved_at: Optional[datetime] = None

    accomplishments: List[AccomplishmentSchema] = []

    @field_validator("rejection_resolved_status", mode="before")
    @classmethod
    def _resolution(cls, v):
        return v or RejectionResolvedStatus.NONE

    @field_validator("employee_rating", "employee_final_rating", "manager_rating", "manager_final_rating", mode="before")
    @classmethod
    def _number(cls, v):
        return coerce_number(v)


class KPIReviewDetail(KPIReviewSchema):
    ratings: List[ItemRatingSchema] = []


# --- Transition requests ---

class ItemRatingInput(BaseModel):
    kpi_item_id: int
    rating_value: Optional[float] = None
    comment: Optional[str] = None

    @field_validator("rating_value", mode="before")
    @classmethod
    def _number(cls, v):
        return coerce_number(v)


class ManagerItemRatingInput(ItemRatingInput):
    qualitative_rating: Optional[QualitativeRating] = None
    actual_value: Optional[float] = None
    target_value: Optional[float] = None
    goal_weight: Optional[float] = None

    @field_validator("actual_value", "target_value", mode="before")
    @classmethod
    def _values(cls, v):
        return coerce_number(v)

    @field_validator("goal_weight", mode="before")
    @classmethod
    def _goal_weight(cls, v):
        return parse_goal_weight(v)


class OpenReviewRequest(BaseModel):
    expected_status: ReviewStatus = ReviewStatus.NONE


class SelfRatingSubmission(BaseModel):
    expected_status: ReviewStatus
    ratings: List[ItemRatingInput] = []
    accomplishments: List[AccomplishmentSchema] = []
    employee_signature: Optional[str] = None
    review_date: Optional[date] = None
    employee_comment: Optional[str] = None
    major_accomplishments: Optional[str] = None
    disappointments: Optional[str] = None
    improvement_needed: Optional[str] = None
    future_plan: Optional[str] = None


class ManagerRatingSubmission(BaseModel):
    expected_status: ReviewStatus
    ratings: List[ManagerItemRatingInput] = []
    manager_comment: Optional[str] = None
    manager_signature: Optional[str] = None


class EmployeeConfirmation(BaseModel):
    expected_status: ReviewStatus = ReviewStatus.MANAGER_SUBMITTED
    action: ConfirmationAction
    rejection_note: Optional[str] = None
    signature: Optional[str] = None


class RejectionResolution(BaseModel):
    expected_status: ReviewStatus = ReviewStatus.REJECTED
    expected_resolution: RejectionResolvedStatus = RejectionResolvedStatus.NONE
    note: Optional[str] = None


# --- Transition results ---

class SelfRatingResult(BaseModel):
    review: KPIReviewSchema
    ratings: List[ItemRatingSchema]
    raw_rating: float
    normalized_rating: float
    rating_label: str


class ManagerRatingResult(BaseModel):
    review: KPIReviewSchema
    ratings: List[ItemRatingSchema]
    final_rating_percentage: Optional[float] = None
    total_weight: float = 0.0


class AllowedAction(BaseModel):
    action: ReviewAction
    actor: ActorRole
    expected_status: ReviewStatus
