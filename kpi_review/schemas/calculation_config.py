from pydantic import BaseModel, ConfigDict, model_validator
from typing import Optional
from datetime import datetime
import enum

from kpi_review.models.kpi import Period


class CalculationMethod(str, enum.Enum):
    NORMAL = "Normal Calculation"
    GOAL_WEIGHT = "Goal Weight Calculation"
    ACTUAL_VS_TARGET = "Actual vs Target Values"


class CalculationConfig(BaseModel):
    """Calculation settings for one department and one period type."""
    model_config = ConfigDict(from_attributes=True)

    department_id: Optional[int] = None
    period: Period
    use_goal_weight: bool = False
    use_actual_values: bool = False
    use_normal_calculation: bool = True
    enable_employee_self_rating: bool = True
    is_default: bool = False
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _exactly_one_method(self):
        enabled = [self.use_normal_calculation, self.use_goal_weight, self.use_actual_values]
        if sum(1 for flag in enabled if flag) != 1:
            raise ValueError(
                "Exactly one of use_normal_calculation, use_goal_weight, use_actual_values must be true"
            )
        return self


class CalculationConfigUpdate(BaseModel):
    use_goal_weight: Optional[bool] = None
    use_actual_values: Optional[bool] = None
    use_normal_calculation: Optional[bool] = None
    enable_employee_self_rating: Optional[bool] = None


class CalculationConfigResponse(CalculationConfig):
    calculation_method: CalculationMethod
