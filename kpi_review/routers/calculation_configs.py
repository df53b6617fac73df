from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from kpi_review.core.schemas import ApiResponse
from kpi_review.database import get_db
from kpi_review.models.kpi import Period
from kpi_review.schemas.calculation_config import (
    CalculationConfig,
    CalculationConfigResponse,
    CalculationConfigUpdate,
)
from kpi_review.services import calculation_config as config_service

router = APIRouter(prefix="/departments", tags=["calculation-settings"])


def _response(config: CalculationConfig) -> CalculationConfigResponse:
    return CalculationConfigResponse(
        **config.model_dump(),
        calculation_method=config_service.calculation_method(config)
    )


@router.get("/{department_id}/calculation-config/{period}", response_model=ApiResponse[CalculationConfigResponse])
def get_calculation_config(department_id: int, period: Period, db: Session = Depends(get_db)):
    config = config_service.resolve(db, department_id, period)
    return ApiResponse.ok(_response(config), notices=config_service.config_notices(config))


@router.put("/{department_id}/calculation-config/{period}", response_model=ApiResponse[CalculationConfigResponse])
def update_calculation_config(
    department_id: int,
    period: Period,
    update: CalculationConfigUpdate,
    db: Session = Depends(get_db)
):
    """
    Partial update. Turning one calculation method on turns the other two
    off; the stored row always has exactly one method enabled.
    """
    config = config_service.update_config(db, department_id, period, update)
    return ApiResponse.ok(_response(config))
