"""
KPI Review Service Layer

Binds the review state machine to storage. Routers call these functions;
these functions load records, resolve the calculation config, let the pure
engine decide the transition, then persist it.

Every review update is written as a compare-and-swap:
    UPDATE kpi_reviews SET ... WHERE id = :id AND review_status = :expected
Zero affected rows means another actor moved the review first, and the
caller gets a StateConflictError to refetch and retry.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from kpi_review.core.exceptions import ConfigurationDefaultedWarning, NotFoundError, StateConflictError
from kpi_review.models.item_rating import ItemRating, RaterRole
from kpi_review.models.kpi import KPI
from kpi_review.models.kpi_review import KPIReview, ReviewAccomplishment, ReviewStatus, RejectionResolvedStatus
from kpi_review.schemas.calculation_config import CalculationConfig
from kpi_review.schemas.kpi import KPISchema
from kpi_review.schemas.rating import AggregationResult, ItemRatingSchema
from kpi_review.schemas.review import (
    AccomplishmentSchema,
    EmployeeConfirmation,
    KPIReviewDetail,
    KPIReviewSchema,
    ManagerRatingResult,
    ManagerRatingSubmission,
    OpenReviewRequest,
    RejectionResolution,
    ReviewAction,
    SelfRatingResult,
    SelfRatingSubmission,
)
from kpi_review.schemas.stage import StageCounts, StageResponse
from kpi_review.services import review_state_machine as machine
from kpi_review.services.audit import AuditService
from kpi_review.services.calculation_config import calculation_method, config_notices, resolve_for_kpi
from kpi_review.services.rating_aggregator import aggregate
from kpi_review.services.stage import calculate_stage_counts, derive_stage

logger = logging.getLogger(__name__)

# Stored labels that mean the same state
_STORED_LABELS = {
    ReviewStatus.MANAGER_SUBMITTED: [ReviewStatus.MANAGER_SUBMITTED.value, "awaiting_employee_confirmation"],
}

_REVIEW_IDENTITY_FIELDS = {"id", "kpi_id", "employee_id", "manager_id", "accomplishments"}


# ============================================================================
# LOADING
# ============================================================================

def _kpi_row(db: Session, kpi_id: int) -> KPI:
    kpi = db.query(KPI).options(selectinload(KPI.items)).filter(KPI.id == kpi_id).first()
    if not kpi:
        raise NotFoundError("kpi", kpi_id)
    return kpi


def get_kpi(db: Session, kpi_id: int) -> KPISchema:
    return KPISchema.model_validate(_kpi_row(db, kpi_id))


def _review_row(db: Session, kpi_id: Optional[int] = None, review_id: Optional[int] = None) -> Optional[KPIReview]:
    query = db.query(KPIReview).options(selectinload(KPIReview.accomplishments))
    if review_id is not None:
        return query.filter(KPIReview.id == review_id).first()
    return query.filter(KPIReview.kpi_id == kpi_id).first()


def get_review(db: Session, kpi_id: Optional[int] = None, review_id: Optional[int] = None) -> Optional[KPIReviewSchema]:
    row = _review_row(db, kpi_id=kpi_id, review_id=review_id)
    return KPIReviewSchema.model_validate(row) if row else None


def require_review(db: Session, review_id: int) -> KPIReviewSchema:
    review = get_review(db, review_id=review_id)
    if review is None:
        raise NotFoundError("review", review_id)
    return review


def get_item_ratings(db: Session, review_id: int) -> List[ItemRatingSchema]:
    rows = db.query(ItemRating).filter(ItemRating.kpi_review_id == review_id).order_by(
        ItemRating.kpi_item_id, ItemRating.rater_role
    ).all()
    return [ItemRatingSchema.model_validate(row) for row in rows]


def get_review_detail(db: Session, review_id: int) -> KPIReviewDetail:
    review = require_review(db, review_id)
    return KPIReviewDetail(**review.model_dump(), ratings=get_item_ratings(db, review_id))


def load_context(db: Session, kpi_id: int) -> Tuple[KPISchema, Optional[KPIReviewSchema], CalculationConfig]:
    kpi = get_kpi(db, kpi_id)
    return kpi, get_review(db, kpi_id=kpi_id), resolve_for_kpi(db, kpi)


def get_calculation_config(db: Session, kpi_id: int) -> CalculationConfig:
    return resolve_for_kpi(db, get_kpi(db, kpi_id))


# ============================================================================
# PERSISTENCE
# ============================================================================

def _column_values(review: KPIReviewSchema) -> Dict[str, Any]:
    values = review.model_dump(exclude=_REVIEW_IDENTITY_FIELDS)
    return {k: (v.value if hasattr(v, "value") and isinstance(v, str) else v) for k, v in values.items()}


def _insert_review(db: Session, review: KPIReviewSchema, action: ReviewAction) -> KPIReviewSchema:
    row = KPIReview(
        kpi_id=review.kpi_id,
        employee_id=review.employee_id,
        manager_id=review.manager_id,
        **_column_values(review)
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        # Someone else created the review between our read and this insert
        raise StateConflictError(action.value, ReviewStatus.NONE.value, "exists")
    return KPIReviewSchema.model_validate(row)


def _swap_review(
    db: Session,
    action: ReviewAction,
    before: KPIReviewSchema,
    after: KPIReviewSchema,
    expected_resolution: Optional[RejectionResolvedStatus] = None,
):
    expected = machine.current_status(before)
    query = db.query(KPIReview).filter(
        KPIReview.id == before.id,
        KPIReview.review_status.in_(_STORED_LABELS.get(expected, [expected.value]))
    )
    if expected_resolution is not None:
        query = query.filter(KPIReview.rejection_resolved_status == expected_resolution.value)

    updated = query.update(_column_values(after), synchronize_session=False)
    if updated != 1:
        db.rollback()
        current = get_review(db, review_id=before.id)
        raise StateConflictError(action.value, expected.value, machine.current_status(current).value)


def _replace_accomplishments(db: Session, review_id: int, accomplishments: List[AccomplishmentSchema]):
    db.query(ReviewAccomplishment).filter(ReviewAccomplishment.review_id == review_id).delete(
        synchronize_session=False
    )
    for accomplishment in accomplishments:
        db.add(ReviewAccomplishment(review_id=review_id, **accomplishment.model_dump()))


def _upsert_ratings(db: Session, review_id: int, ratings: List[ItemRatingSchema]):
    for rating in ratings:
        role = RaterRole(rating.rater_role).value
        row = db.query(ItemRating).filter(
            ItemRating.kpi_item_id == rating.kpi_item_id,
            ItemRating.rater_role == role
        ).first()
        values = rating.model_dump(exclude={"id", "kpi_review_id", "kpi_item_id", "rater_role"})
        values = {k: (v.value if hasattr(v, "value") and isinstance(v, str) else v) for k, v in values.items()}
        if row is None:
            row = ItemRating(kpi_review_id=review_id, kpi_item_id=rating.kpi_item_id, rater_role=role)
            db.add(row)
        for key, value in values.items():
            setattr(row, key, value)


def _commit(db: Session):
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


def _log_transition(
    db: Session,
    action: ReviewAction,
    before: Optional[KPIReviewSchema],
    after: KPIReviewSchema,
    review_id: int,
    details: Optional[dict] = None,
):
    before_status = machine.current_status(before).value
    AuditService.log(
        db,
        action=action.value,
        review_id=review_id,
        actor_role=machine.ACTION_ACTORS[action].value,
        details={"kpi_id": after.kpi_id, **(details or {})},
        before_state={
            "review_status": before_status,
            "rejection_resolved_status": machine.current_resolution(before).value,
        },
        after_state={
            "review_status": machine.current_status(after).value,
            "rejection_resolved_status": machine.current_resolution(after).value,
        },
    )
    logger.info(
        f"Review transition {action.value}: {before_status} -> {machine.current_status(after).value}",
        extra={"kpi_id": after.kpi_id, "review_id": review_id}
    )


# ============================================================================
# TRANSITIONS
# ============================================================================

def open_review(db: Session, kpi_id: int, request: OpenReviewRequest) -> KPIReviewSchema:
    kpi, review, config = load_context(db, kpi_id)
    pending = machine.open_review(kpi, review, config, request.expected_status)
    try:
        created = _insert_review(db, pending, ReviewAction.OPEN_REVIEW)
        _log_transition(db, ReviewAction.OPEN_REVIEW, review, created, created.id)
        _commit(db)
    except Exception:
        db.rollback()
        raise
    return get_review(db, kpi_id=kpi_id)


def submit_self_rating(db: Session, kpi_id: int, submission: SelfRatingSubmission) -> SelfRatingResult:
    """
    Employee self-rating. When no review exists yet and the caller expects
    NONE, the review is opened and submitted in the same transaction.
    """
    kpi, review, config = load_context(db, kpi_id)
    try:
        if submission.expected_status == ReviewStatus.NONE:
            machine.validate_self_rating(kpi, submission)
            pending = machine.open_review(kpi, review, config, ReviewStatus.NONE)
            opened = _insert_review(db, pending, ReviewAction.OPEN_REVIEW)
            _log_transition(db, ReviewAction.OPEN_REVIEW, review, opened, opened.id)
            review = opened
            submission = submission.model_copy(update={"expected_status": ReviewStatus.PENDING})

        result = machine.submit_self_rating(kpi, review, config, submission)
        _swap_review(db, ReviewAction.SUBMIT_SELF_RATING, review, result.review)
        _replace_accomplishments(db, review.id, result.review.accomplishments)
        _upsert_ratings(db, review.id, result.ratings)
        _log_transition(
            db, ReviewAction.SUBMIT_SELF_RATING, review, result.review, review.id,
            details={"raw_rating": result.raw_rating, "normalized_rating": result.normalized_rating},
        )
        _commit(db)
    except Exception:
        db.rollback()
        raise

    stored = get_review(db, kpi_id=kpi_id)
    return result.model_copy(update={"review": stored, "ratings": get_item_ratings(db, stored.id)})


def submit_manager_rating(db: Session, kpi_id: int, submission: ManagerRatingSubmission) -> ManagerRatingResult:
    kpi, review, config = load_context(db, kpi_id)
    try:
        result = machine.submit_manager_rating(kpi, review, config, submission)
        if review is None:
            # Manager-initiated review: self-rating is disabled for this period
            created = _insert_review(db, result.review, ReviewAction.SUBMIT_MANAGER_RATING)
            review_id = created.id
        else:
            _swap_review(db, ReviewAction.SUBMIT_MANAGER_RATING, review, result.review)
            review_id = review.id
        _upsert_ratings(db, review_id, result.ratings)
        _log_transition(
            db, ReviewAction.SUBMIT_MANAGER_RATING, review, result.review, review_id,
            details={
                "calculation_method": calculation_method(config).value,
                "manager_final_rating": result.review.manager_final_rating,
            },
        )
        _commit(db)
    except Exception:
        db.rollback()
        raise

    stored = get_review(db, kpi_id=kpi_id)
    manager_ratings = [r for r in get_item_ratings(db, stored.id) if r.rater_role == RaterRole.MANAGER]
    return result.model_copy(update={"review": stored, "ratings": manager_ratings})


def submit_employee_confirmation(db: Session, review_id: int, confirmation: EmployeeConfirmation) -> KPIReviewSchema:
    review = require_review(db, review_id)
    updated = machine.confirm_review(review, confirmation)
    action = ReviewAction.APPROVE if updated.review_status == ReviewStatus.COMPLETED else ReviewAction.REJECT
    try:
        _swap_review(db, action, review, updated)
        _log_transition(db, action, review, updated, review_id)
        _commit(db)
    except Exception:
        db.rollback()
        raise
    return require_review(db, review_id)


def resolve_rejection(db: Session, review_id: int, resolution: RejectionResolution) -> KPIReviewSchema:
    review = require_review(db, review_id)
    updated = machine.resolve_rejection(review, resolution)
    try:
        _swap_review(
            db, ReviewAction.RESOLVE_REJECTION, review, updated,
            expected_resolution=RejectionResolvedStatus.NONE,
        )
        _log_transition(db, ReviewAction.RESOLVE_REJECTION, review, updated, review_id)
        _commit(db)
    except Exception:
        db.rollback()
        raise
    return require_review(db, review_id)


# ============================================================================
# READ MODELS
# ============================================================================

def get_stage(db: Session, kpi_id: int) -> Tuple[StageResponse, List[ConfigurationDefaultedWarning]]:
    kpi, review, config = load_context(db, kpi_id)
    response = StageResponse(
        kpi_id=kpi.id,
        review_id=review.id if review else None,
        stage=derive_stage(kpi, review),
        review_status=machine.current_status(review),
        rejection_resolved_status=machine.current_resolution(review),
        calculation_method=calculation_method(config),
        self_rating_enabled=config.enable_employee_self_rating,
        allowed_actions=machine.allowed_actions(kpi, review, config),
    )
    return response, config_notices(config)


def aggregate_kpi(
    db: Session,
    kpi_id: int,
    rater_role: RaterRole
) -> Tuple[AggregationResult, List[ConfigurationDefaultedWarning]]:
    kpi, review, config = load_context(db, kpi_id)
    ratings = get_item_ratings(db, review.id) if review else []
    return aggregate(kpi.items, ratings, calculation_method(config), rater_role), config_notices(config)


def list_rejections(db: Session, resolved: Optional[bool] = None) -> List[KPIReviewSchema]:
    query = db.query(KPIReview).options(selectinload(KPIReview.accomplishments)).filter(
        KPIReview.review_status == ReviewStatus.REJECTED.value
    )
    if resolved is True:
        query = query.filter(KPIReview.rejection_resolved_status == RejectionResolvedStatus.RESOLVED.value)
    elif resolved is False:
        query = query.filter(KPIReview.rejection_resolved_status != RejectionResolvedStatus.RESOLVED.value)
    return [KPIReviewSchema.model_validate(row) for row in query.order_by(KPIReview.id).all()]


def dashboard_stats(
    db: Session,
    employee_id: Optional[int] = None,
    manager_id: Optional[int] = None,
    department_id: Optional[int] = None,
) -> StageCounts:
    query = db.query(KPI).options(selectinload(KPI.items), selectinload(KPI.review))
    if employee_id is not None:
        query = query.filter(KPI.employee_id == employee_id)
    if manager_id is not None:
        query = query.filter(KPI.manager_id == manager_id)
    if department_id is not None:
        query = query.filter(KPI.department_id == department_id)

    entries = []
    for row in query.all():
        review = KPIReviewSchema.model_validate(row.review) if row.review else None
        entries.append((KPISchema.model_validate(row), review))
    return calculate_stage_counts(entries)
