from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from kpi_review.core.schemas import ApiResponse
from kpi_review.database import get_db
from kpi_review.schemas.stage import StageCounts
from kpi_review.services import review_service

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats", response_model=ApiResponse[StageCounts])
def get_stats(
    employee_id: Optional[int] = Query(None),
    manager_id: Optional[int] = Query(None),
    department_id: Optional[int] = Query(None),
    db: Session = Depends(get_db)
):
    """KPI counts per stage, derived the same way the stage endpoint derives them."""
    return ApiResponse.ok(review_service.dashboard_stats(db, employee_id, manager_id, department_id))
