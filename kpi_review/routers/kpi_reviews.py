"""
KPI Review Router

Per-KPI endpoints: reading the KPI, its review and stage, and the three
transitions that are addressed by KPI (open, self-rating, manager rating).
All business logic is delegated to the review service layer.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from kpi_review.core.exceptions import NotFoundError
from kpi_review.core.schemas import ApiResponse
from kpi_review.database import get_db
from kpi_review.models.item_rating import RaterRole
from kpi_review.schemas.calculation_config import CalculationConfigResponse
from kpi_review.schemas.kpi import KPISchema
from kpi_review.schemas.rating import AggregationResult
from kpi_review.schemas.review import (
    KPIReviewSchema,
    ManagerRatingResult,
    ManagerRatingSubmission,
    OpenReviewRequest,
    SelfRatingResult,
    SelfRatingSubmission,
)
from kpi_review.schemas.stage import StageResponse
from kpi_review.services import review_service
from kpi_review.services.calculation_config import calculation_method, config_notices

router = APIRouter(prefix="/kpis", tags=["kpi-reviews"])


@router.get("/{kpi_id}", response_model=ApiResponse[KPISchema])
def get_kpi(kpi_id: int, db: Session = Depends(get_db)):
    return ApiResponse.ok(review_service.get_kpi(db, kpi_id))


@router.get("/{kpi_id}/review", response_model=ApiResponse[KPIReviewSchema])
def get_review(kpi_id: int, db: Session = Depends(get_db)):
    """Current review for the KPI. 404 until a review has been started."""
    review_service.get_kpi(db, kpi_id)
    review = review_service.get_review(db, kpi_id=kpi_id)
    if review is None:
        raise NotFoundError("review", kpi_id)
    return ApiResponse.ok(review)


@router.get("/{kpi_id}/stage", response_model=ApiResponse[StageResponse])
def get_stage(kpi_id: int, db: Session = Depends(get_db)):
    stage, notices = review_service.get_stage(db, kpi_id)
    return ApiResponse.ok(stage, notices=notices)


@router.get("/{kpi_id}/aggregate", response_model=ApiResponse[AggregationResult])
def get_aggregate(
    kpi_id: int,
    rater_role: RaterRole = Query(RaterRole.MANAGER),
    db: Session = Depends(get_db)
):
    result, notices = review_service.aggregate_kpi(db, kpi_id, rater_role)
    return ApiResponse.ok(result, notices=notices)


@router.get("/{kpi_id}/calculation-config", response_model=ApiResponse[CalculationConfigResponse])
def get_calculation_config(kpi_id: int, db: Session = Depends(get_db)):
    config = review_service.get_calculation_config(db, kpi_id)
    return ApiResponse.ok(
        CalculationConfigResponse(**config.model_dump(), calculation_method=calculation_method(config)),
        notices=config_notices(config),
    )


@router.post("/{kpi_id}/review/open", response_model=ApiResponse[KPIReviewSchema])
def open_review(kpi_id: int, request: OpenReviewRequest, db: Session = Depends(get_db)):
    return ApiResponse.ok(review_service.open_review(db, kpi_id, request))


@router.post("/{kpi_id}/self-rating", response_model=ApiResponse[SelfRatingResult])
def submit_self_rating(kpi_id: int, submission: SelfRatingSubmission, db: Session = Depends(get_db)):
    """
    Employee self-rating. Returns the raw aggregate alongside the value
    snapped to the allowed rating scale.
    """
    return ApiResponse.ok(review_service.submit_self_rating(db, kpi_id, submission))


@router.post("/{kpi_id}/manager-rating", response_model=ApiResponse[ManagerRatingResult])
def submit_manager_rating(kpi_id: int, submission: ManagerRatingSubmission, db: Session = Depends(get_db)):
    return ApiResponse.ok(review_service.submit_manager_rating(db, kpi_id, submission))
