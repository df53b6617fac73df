"""
Review Router

Endpoints addressed by review id: employee confirmation, rejection
resolution and the HR rejection worklist.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from kpi_review.core.schemas import ApiResponse
from kpi_review.database import get_db
from kpi_review.schemas.rating import ItemRatingSchema
from kpi_review.schemas.review import (
    EmployeeConfirmation,
    KPIReviewDetail,
    KPIReviewSchema,
    RejectionResolution,
)
from kpi_review.services import review_service

router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.get("/rejections", response_model=ApiResponse[List[KPIReviewSchema]])
def list_rejections(
    resolved: Optional[bool] = Query(None, description="Filter by resolution; omit for all rejected reviews"),
    db: Session = Depends(get_db)
):
    rejections = review_service.list_rejections(db, resolved)
    return ApiResponse.ok(rejections, metadata={"count": len(rejections)})


@router.get("/{review_id}", response_model=ApiResponse[KPIReviewDetail])
def get_review(review_id: int, db: Session = Depends(get_db)):
    return ApiResponse.ok(review_service.get_review_detail(db, review_id))


@router.get("/{review_id}/ratings", response_model=ApiResponse[List[ItemRatingSchema]])
def get_ratings(review_id: int, db: Session = Depends(get_db)):
    review_service.require_review(db, review_id)
    return ApiResponse.ok(review_service.get_item_ratings(db, review_id))


@router.post("/{review_id}/employee-confirmation", response_model=ApiResponse[KPIReviewSchema])
def submit_employee_confirmation(
    review_id: int,
    confirmation: EmployeeConfirmation,
    db: Session = Depends(get_db)
):
    """Employee approves (signature required) or rejects (note required) the manager's review."""
    return ApiResponse.ok(review_service.submit_employee_confirmation(db, review_id, confirmation))


@router.post("/{review_id}/resolve-rejection", response_model=ApiResponse[KPIReviewSchema])
def resolve_rejection(review_id: int, resolution: RejectionResolution, db: Session = Depends(get_db)):
    return ApiResponse.ok(review_service.resolve_rejection(db, review_id, resolution))
