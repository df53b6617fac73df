from typing import List

from fastapi import APIRouter, Query

from kpi_review.core.schemas import ApiResponse
from kpi_review.models.kpi import Period
from kpi_review.schemas.rating import NormalizedRating, RatingOption
from kpi_review.services import self_rating

router = APIRouter(prefix="/ratings", tags=["ratings"])


@router.get("/options", response_model=ApiResponse[List[RatingOption]])
def get_rating_options(period: Period = Query(Period.QUARTERLY)):
    return ApiResponse.ok(self_rating.rating_options(period))


@router.get("/normalize", response_model=ApiResponse[NormalizedRating])
def normalize_rating(value: str = Query(..., description="Raw computed rating")):
    # Malformed values are treated as 0 rather than rejected
    return ApiResponse.ok(self_rating.normalize_with_label(value))
