"""
Review State Machine

    NONE -> PENDING -> EMPLOYEE_SUBMITTED -> MANAGER_SUBMITTED -> COMPLETED
                                                               -> REJECTED -> (resolved)

Pure functions: each transition takes the current records plus the caller's
expected state, checks that the stored state still matches (compare-and-swap),
checks the submission guards, and returns the new records. Nothing here talks
to the database; persistence and the optimistic lock belong to review_service.

When employee self-rating is disabled for the KPI's period the manager may
submit first, straight from NONE (or a PENDING row left over from before the
setting changed).
"""
import logging
import math
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from kpi_review.core.config import settings
from kpi_review.core.exceptions import StateConflictError, ValidationError
from kpi_review.models.item_rating import RaterRole
from kpi_review.models.kpi import KPIStatus
from kpi_review.models.kpi_review import ReviewStatus, RejectionResolvedStatus
from kpi_review.schemas.calculation_config import CalculationConfig, CalculationMethod
from kpi_review.schemas.kpi import KPISchema
from kpi_review.schemas.rating import ItemRatingSchema
from kpi_review.schemas.review import (
    AccomplishmentSchema,
    ActorRole,
    AllowedAction,
    ConfirmationAction,
    EmployeeConfirmation,
    KPIReviewSchema,
    ManagerRatingResult,
    ManagerRatingSubmission,
    RejectionResolution,
    ReviewAction,
    SelfRatingResult,
    SelfRatingSubmission,
)
from kpi_review.services.calculation_config import calculation_method, is_self_rating_enabled
from kpi_review.services.rating_aggregator import aggregate
from kpi_review.services.self_rating import allowed_values, normalize, rating_label

logger = logging.getLogger(__name__)

SOURCE_STATES: Dict[ReviewAction, Tuple[ReviewStatus, ...]] = {
    ReviewAction.OPEN_REVIEW: (ReviewStatus.NONE,),
    ReviewAction.SUBMIT_SELF_RATING: (ReviewStatus.PENDING,),
    ReviewAction.SUBMIT_MANAGER_RATING: (ReviewStatus.EMPLOYEE_SUBMITTED,),
    ReviewAction.APPROVE: (ReviewStatus.MANAGER_SUBMITTED,),
    ReviewAction.REJECT: (ReviewStatus.MANAGER_SUBMITTED,),
    ReviewAction.RESOLVE_REJECTION: (ReviewStatus.REJECTED,),
}

MANAGER_INITIATED_SOURCES = (ReviewStatus.NONE, ReviewStatus.PENDING)

ACTION_ACTORS: Dict[ReviewAction, ActorRole] = {
    ReviewAction.OPEN_REVIEW: ActorRole.EMPLOYEE,
    ReviewAction.SUBMIT_SELF_RATING: ActorRole.EMPLOYEE,
    ReviewAction.SUBMIT_MANAGER_RATING: ActorRole.MANAGER,
    ReviewAction.APPROVE: ActorRole.EMPLOYEE,
    ReviewAction.REJECT: ActorRole.EMPLOYEE,
    ReviewAction.RESOLVE_REJECTION: ActorRole.HR,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _on_scale(value: Optional[float]) -> bool:
    return value is not None and any(math.isclose(value, option) for option in allowed_values())


def _require_scale(values: Dict[int, Optional[float]], field: str):
    """Keys are item ids or accomplishment indexes; None means not rated."""
    off_scale = sorted(key for key, value in values.items() if value is not None and not _on_scale(value))
    if off_scale:
        raise ValidationError(
            "Ratings must be one of the allowed rating values",
            field=field,
            allowed_values=allowed_values(),
            off_scale=off_scale,
        )


def current_status(review: Optional[KPIReviewSchema]) -> ReviewStatus:
    if review is None:
        return ReviewStatus.NONE
    return ReviewStatus(review.review_status)


def current_resolution(review: Optional[KPIReviewSchema]) -> RejectionResolvedStatus:
    if review is None:
        return RejectionResolvedStatus.NONE
    return RejectionResolvedStatus(review.rejection_resolved_status)


def source_states(action: ReviewAction, config: Optional[CalculationConfig] = None) -> Tuple[ReviewStatus, ...]:
    states = SOURCE_STATES[ReviewAction(action)]
    if action == ReviewAction.SUBMIT_MANAGER_RATING and config is not None and not is_self_rating_enabled(config):
        states = states + MANAGER_INITIATED_SOURCES
    return states


def require_state(
    action: ReviewAction,
    review: Optional[KPIReviewSchema],
    expected_status: ReviewStatus,
    config: Optional[CalculationConfig] = None,
    expected_resolution: Optional[RejectionResolvedStatus] = None,
) -> ReviewStatus:
    """
    Compare-and-swap precondition plus transition legality.
    Raises StateConflictError when the stored state differs from what the
    caller expected, or when the action is not legal from that state.
    """
    action = ReviewAction(action)
    actual = current_status(review)
    expected = ReviewStatus(expected_status)

    if actual != expected:
        logger.warning(
            f"Stale review state for {action.value}",
            extra={"expected": expected.value, "actual": actual.value}
        )
        raise StateConflictError(action.value, expected.value, actual.value)

    if expected_resolution is not None:
        stored = current_resolution(review)
        if stored != RejectionResolvedStatus(expected_resolution):
            logger.warning(
                f"Stale rejection resolution for {action.value}",
                extra={"expected": RejectionResolvedStatus(expected_resolution).value, "actual": stored.value}
            )
            raise StateConflictError(action.value, RejectionResolvedStatus(expected_resolution).value, stored.value)

    legal = source_states(action, config)
    if actual not in legal:
        logger.warning(f"Illegal transition {action.value} from {actual.value}")
        raise StateConflictError(
            action.value,
            [state.value for state in legal],
            actual.value,
            message=f"Cannot {action.value.replace('_', ' ')} while review is '{actual.value}'",
        )
    return actual


def _require_acknowledged(kpi: KPISchema):
    if KPIStatus(kpi.status) != KPIStatus.ACKNOWLEDGED:
        raise ValidationError(
            "KPI must be acknowledged by the employee before it can be reviewed",
            field="kpi.status",
            kpi_id=kpi.id,
            kpi_status=KPIStatus(kpi.status).value,
        )


def _new_review(kpi: KPISchema, status: ReviewStatus) -> KPIReviewSchema:
    return KPIReviewSchema(
        kpi_id=kpi.id,
        employee_id=kpi.employee_id,
        manager_id=kpi.manager_id,
        review_status=status,
    )


# --- 1. NONE -> PENDING ---

def open_review(
    kpi: KPISchema,
    review: Optional[KPIReviewSchema],
    config: CalculationConfig,
    expected_status: ReviewStatus = ReviewStatus.NONE,
) -> KPIReviewSchema:
    require_state(ReviewAction.OPEN_REVIEW, review, expected_status, config)
    _require_acknowledged(kpi)
    if not is_self_rating_enabled(config):
        raise ValidationError(
            f"Employee self-rating is disabled for {config.period.value} KPIs; the manager starts this review",
            field="enable_employee_self_rating",
            period=config.period.value,
        )
    return _new_review(kpi, ReviewStatus.PENDING)


# --- 2. PENDING -> EMPLOYEE_SUBMITTED ---

def validate_self_rating(kpi: KPISchema, submission: SelfRatingSubmission):
    minimum = settings.ratings.min_accomplishments
    if len(submission.accomplishments) < minimum:
        raise ValidationError(
            f"Please add at least {minimum} major accomplishments",
            field="accomplishments",
            minimum=minimum,
            provided=len(submission.accomplishments),
        )
    for index, accomplishment in enumerate(submission.accomplishments):
        if _blank(accomplishment.title):
            raise ValidationError(
                "Every accomplishment needs a title",
                field=f"accomplishments[{index}].title",
                index=index,
            )
        if accomplishment.employee_rating is None:
            raise ValidationError(
                "Every accomplishment needs a rating",
                field=f"accomplishments[{index}].employee_rating",
                index=index,
            )
    _require_scale(
        {index: a.employee_rating for index, a in enumerate(submission.accomplishments)},
        "accomplishments",
    )

    item_ids = {item.id for item in kpi.items}
    unknown = sorted({r.kpi_item_id for r in submission.ratings} - item_ids)
    if unknown:
        raise ValidationError("Ratings reference items outside this KPI", field="ratings", unknown_item_ids=unknown)

    given = {r.kpi_item_id: r.rating_value for r in submission.ratings}
    unrated = [item.id for item in kpi.numeric_items if not (given.get(item.id) or 0) > 0]
    if unrated:
        raise ValidationError(
            "Please provide ratings for all KPI items before submitting",
            field="ratings",
            unrated_item_ids=unrated,
        )
    _require_scale({item.id: given[item.id] for item in kpi.numeric_items}, "ratings")

    if _blank(submission.employee_signature):
        raise ValidationError("Please provide your signature", field="employee_signature")
    if submission.review_date is None:
        raise ValidationError("Please select the review date", field="review_date")


def submit_self_rating(
    kpi: KPISchema,
    review: Optional[KPIReviewSchema],
    config: CalculationConfig,
    submission: SelfRatingSubmission,
    now: Optional[datetime] = None,
) -> SelfRatingResult:
    require_state(ReviewAction.SUBMIT_SELF_RATING, review, submission.expected_status, config)
    if not is_self_rating_enabled(config):
        raise ValidationError(
            f"Employee self-rating is disabled for {config.period.value} KPIs",
            field="enable_employee_self_rating",
            period=config.period.value,
        )
    validate_self_rating(kpi, submission)

    qualitative = {item.id for item in kpi.items if item.is_qualitative}
    latest = {r.kpi_item_id: r for r in submission.ratings}
    ratings = [
        ItemRatingSchema(
            kpi_review_id=review.id,
            kpi_item_id=item_id,
            rater_role=RaterRole.EMPLOYEE,
            rating_value=None if item_id in qualitative else r.rating_value,
            comment=r.comment,
        )
        for item_id, r in latest.items()
    ]

    # Employees rate on the discrete scale even when the manager scores
    # actual vs target, so their aggregate falls back to the plain mean.
    method = calculation_method(config)
    if method == CalculationMethod.ACTUAL_VS_TARGET:
        method = CalculationMethod.NORMAL
    result = aggregate(kpi.items, ratings, method, RaterRole.EMPLOYEE)
    normalized = normalize(result.total)

    accomplishments = [
        AccomplishmentSchema(
            title=a.title.strip(),
            description=a.description,
            employee_rating=a.employee_rating,
            item_order=order,
        )
        for order, a in enumerate(submission.accomplishments, start=1)
    ]

    updated = review.model_copy(update={
        "review_status": ReviewStatus.EMPLOYEE_SUBMITTED,
        "employee_rating": normalized,
        "employee_final_rating": result.total,
        "employee_comment": submission.employee_comment,
        "employee_signature": submission.employee_signature,
        "self_review_date": submission.review_date,
        "major_accomplishments": submission.major_accomplishments,
        "disappointments": submission.disappointments,
        "improvement_needed": submission.improvement_needed,
        "future_plan": submission.future_plan,
        "employee_submitted_at": now or _now(),
        "accomplishments": accomplishments,
    })
    return SelfRatingResult(
        review=updated,
        ratings=ratings,
        raw_rating=result.total,
        normalized_rating=normalized,
        rating_label=rating_label(normalized),
    )


# --- 3. EMPLOYEE_SUBMITTED (or manager-initiated) -> MANAGER_SUBMITTED ---

def validate_manager_rating(kpi: KPISchema, config: CalculationConfig, submission: ManagerRatingSubmission):
    item_ids = {item.id for item in kpi.items}
    unknown = sorted({r.kpi_item_id for r in submission.ratings} - item_ids)
    if unknown:
        raise ValidationError("Ratings reference items outside this KPI", field="ratings", unknown_item_ids=unknown)

    given = {r.kpi_item_id: r for r in submission.ratings}
    bad_weights = sorted(
        r.kpi_item_id for r in submission.ratings if r.goal_weight is not None and not 0 <= r.goal_weight <= 1
    )
    if bad_weights:
        raise ValidationError(
            "Goal weights must be a fraction between 0 and 1 or a whole percentage",
            field="ratings.goal_weight",
            invalid_item_ids=bad_weights,
        )

    if calculation_method(config) == CalculationMethod.ACTUAL_VS_TARGET:
        missing = [
            item.id for item in kpi.numeric_items
            if (given[item.id].actual_value if item.id in given else None) is None and item.actual_value is None
        ]
        if missing:
            raise ValidationError(
                "Please enter the actual value achieved for every KPI item",
                field="ratings.actual_value",
                missing_item_ids=missing,
            )
    else:
        unrated = [
            item.id for item in kpi.numeric_items
            if not ((given[item.id].rating_value if item.id in given else None) or 0) > 0
        ]
        if unrated:
            raise ValidationError(
                "Please rate every KPI item before submitting",
                field="ratings",
                unrated_item_ids=unrated,
            )
        _require_scale({item.id: given[item.id].rating_value for item in kpi.numeric_items}, "ratings")


def submit_manager_rating(
    kpi: KPISchema,
    review: Optional[KPIReviewSchema],
    config: CalculationConfig,
    submission: ManagerRatingSubmission,
    now: Optional[datetime] = None,
) -> ManagerRatingResult:
    source = require_state(ReviewAction.SUBMIT_MANAGER_RATING, review, submission.expected_status, config)
    if source in MANAGER_INITIATED_SOURCES:
        _require_acknowledged(kpi)
    validate_manager_rating(kpi, config, submission)

    items = {item.id: item for item in kpi.items}
    latest = {r.kpi_item_id: r for r in submission.ratings}
    ratings = []
    for item_id, r in latest.items():
        item = items[item_id]
        ratings.append(ItemRatingSchema(
            kpi_review_id=review.id if review else None,
            kpi_item_id=item_id,
            rater_role=RaterRole.MANAGER,
            rating_value=None if item.is_qualitative else r.rating_value,
            qualitative_rating=r.qualitative_rating if item.is_qualitative else None,
            comment=r.comment,
            actual_value=None if item.is_qualitative else r.actual_value,
            target_value=None if item.is_qualitative else r.target_value,
            goal_weight=None if item.is_qualitative else r.goal_weight,
        ))

    method = calculation_method(config)
    result = aggregate(kpi.items, ratings, method, RaterRole.MANAGER)

    if method == CalculationMethod.ACTUAL_VS_TARGET:
        derived = {c.kpi_item_id: c for c in result.breakdown}
        ratings = [
            r.model_copy(update={
                "percentage_value_obtained": derived[r.kpi_item_id].percentage_value_obtained,
                "manager_rating_percentage": derived[r.kpi_item_id].manager_rating_percentage,
            }) if r.kpi_item_id in derived else r
            for r in ratings
        ]
        average = result.total
    else:
        average = aggregate(kpi.items, ratings, CalculationMethod.NORMAL, RaterRole.MANAGER).total

    base = review if review is not None else _new_review(kpi, ReviewStatus.NONE)
    updated = base.model_copy(update={
        "review_status": ReviewStatus.MANAGER_SUBMITTED,
        "manager_rating": average,
        "manager_final_rating": result.total,
        "manager_comment": submission.manager_comment,
        "manager_signature": submission.manager_signature,
        "manager_submitted_at": now or _now(),
    })
    return ManagerRatingResult(
        review=updated,
        ratings=ratings,
        final_rating_percentage=result.total if method == CalculationMethod.ACTUAL_VS_TARGET else None,
        total_weight=result.total_weight,
    )


# --- 4/5. MANAGER_SUBMITTED -> COMPLETED | REJECTED ---

def confirm_review(
    review: Optional[KPIReviewSchema],
    confirmation: EmployeeConfirmation,
    now: Optional[datetime] = None,
) -> KPIReviewSchema:
    if ConfirmationAction(confirmation.action) == ConfirmationAction.APPROVE:
        require_state(ReviewAction.APPROVE, review, confirmation.expected_status)
        if _blank(confirmation.signature):
            raise ValidationError("Please provide your signature to approve the review", field="signature")
        return review.model_copy(update={
            "review_status": ReviewStatus.COMPLETED,
            "employee_confirmation_signature": confirmation.signature,
            "employee_confirmed_at": now or _now(),
            "employee_rejection_note": None,
        })

    require_state(ReviewAction.REJECT, review, confirmation.expected_status)
    if _blank(confirmation.rejection_note):
        raise ValidationError("Please explain why you are rejecting this review", field="rejection_note")
    return review.model_copy(update={
        "review_status": ReviewStatus.REJECTED,
        "employee_confirmation_signature": None,
        "employee_confirmed_at": now or _now(),
        "employee_rejection_note": confirmation.rejection_note.strip(),
        "rejection_resolved_status": RejectionResolvedStatus.NONE,
    })


# --- 6. REJECTED(NONE) -> REJECTED(RESOLVED) ---

def resolve_rejection(
    review: Optional[KPIReviewSchema],
    resolution: RejectionResolution,
    now: Optional[datetime] = None,
) -> KPIReviewSchema:
    require_state(
        ReviewAction.RESOLVE_REJECTION,
        review,
        resolution.expected_status,
        expected_resolution=resolution.expected_resolution,
    )
    if current_resolution(review) != RejectionResolvedStatus.NONE:
        raise StateConflictError(
            ReviewAction.RESOLVE_REJECTION.value,
            RejectionResolvedStatus.NONE.value,
            current_resolution(review).value,
            message="This rejection has already been resolved",
        )
    if _blank(resolution.note):
        raise ValidationError("Please add a resolution note", field="note")
    return review.model_copy(update={
        "rejection_resolved_status": RejectionResolvedStatus.RESOLVED,
        "rejection_resolved_note": resolution.note.strip(),
        "rejection_resolved_at": now or _now(),
    })


def allowed_actions(
    kpi: KPISchema,
    review: Optional[KPIReviewSchema],
    config: CalculationConfig,
) -> List[AllowedAction]:
    status = current_status(review)
    acknowledged = KPIStatus(kpi.status) == KPIStatus.ACKNOWLEDGED
    self_rating = is_self_rating_enabled(config)
    actions = []

    for action in ReviewAction:
        if status not in source_states(action, config):
            continue
        if action in (ReviewAction.OPEN_REVIEW, ReviewAction.SUBMIT_SELF_RATING) and not self_rating:
            continue
        if status == ReviewStatus.NONE and not acknowledged:
            continue
        if action == ReviewAction.RESOLVE_REJECTION and current_resolution(review) != RejectionResolvedStatus.NONE:
            continue
        actions.append(AllowedAction(action=action, actor=ACTION_ACTORS[action], expected_status=status))
    return actions
