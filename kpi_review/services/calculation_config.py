"""
Calculation config resolution.

A department configures quarterly and yearly KPIs independently. Exactly one
calculation method is active per period type; the flags are normalised on
every write so readers can rely on it.
"""
import logging
from typing import Dict, List, Optional, Union

from sqlalchemy.orm import Session

from kpi_review.core.config import settings
from kpi_review.core.exceptions import ConfigurationDefaultedWarning
from kpi_review.models.calculation_config import DepartmentCalculationConfig
from kpi_review.models.kpi import Period
from kpi_review.schemas.calculation_config import (
    CalculationConfig,
    CalculationConfigUpdate,
    CalculationMethod,
)
from kpi_review.schemas.kpi import KPISchema

logger = logging.getLogger(__name__)

METHOD_FLAGS = ("use_normal_calculation", "use_goal_weight", "use_actual_values")


def default_config(department_id: Optional[int], period: Union[Period, str]) -> CalculationConfig:
    return CalculationConfig(
        department_id=department_id,
        period=Period(period),
        use_goal_weight=False,
        use_actual_values=False,
        use_normal_calculation=True,
        enable_employee_self_rating=settings.ratings.default_self_rating_enabled,
        is_default=True,
    )


def enforce_exclusivity(current: Dict[str, bool], changes: Dict[str, Optional[bool]]) -> Dict[str, bool]:
    """
    Merge `changes` into `current` so exactly one method flag stays on.
    A method switched on by this change wins; otherwise actual values take
    priority over goal weight, and normal calculation is the fallback.
    """
    flags = {name: bool(current.get(name, False)) for name in METHOD_FLAGS}
    flags.update({name: bool(value) for name, value in changes.items() if name in METHOD_FLAGS and value is not None})

    if changes.get("use_actual_values"):
        flags["use_goal_weight"] = False
        flags["use_normal_calculation"] = False
    elif changes.get("use_goal_weight"):
        flags["use_actual_values"] = False
        flags["use_normal_calculation"] = False
    elif changes.get("use_normal_calculation"):
        flags["use_goal_weight"] = False
        flags["use_actual_values"] = False

    if flags["use_actual_values"]:
        flags["use_goal_weight"] = False
        flags["use_normal_calculation"] = False
    elif flags["use_goal_weight"]:
        flags["use_normal_calculation"] = False
    else:
        flags["use_normal_calculation"] = True
    return flags


def calculation_method(config: CalculationConfig) -> CalculationMethod:
    # Checked in the same priority order enforce_exclusivity applies
    if config.use_actual_values:
        return CalculationMethod.ACTUAL_VS_TARGET
    if config.use_goal_weight:
        return CalculationMethod.GOAL_WEIGHT
    return CalculationMethod.NORMAL


def calculation_method_name(config: CalculationConfig) -> str:
    return calculation_method(config).value


def is_self_rating_enabled(config: CalculationConfig) -> bool:
    return bool(config.enable_employee_self_rating)


def are_goal_weights_required(config: CalculationConfig) -> bool:
    return calculation_method(config) in (CalculationMethod.GOAL_WEIGHT, CalculationMethod.ACTUAL_VS_TARGET)


def are_actual_values_required(config: CalculationConfig) -> bool:
    return calculation_method(config) == CalculationMethod.ACTUAL_VS_TARGET


def config_notices(config: CalculationConfig) -> List[ConfigurationDefaultedWarning]:
    if config.is_default:
        return [ConfigurationDefaultedWarning(config.department_id, config.period.value)]
    return []


def resolve(db: Session, department_id: Optional[int], period: Union[Period, str]) -> CalculationConfig:
    """
    Resolve the calculation config for a department and period type.
    Never raises for a missing row: falls back to the default config with
    is_default=True so callers can warn without blocking calculation.
    """
    period = Period(period)
    row = None
    if department_id is not None:
        row = db.query(DepartmentCalculationConfig).filter(
            DepartmentCalculationConfig.department_id == department_id,
            DepartmentCalculationConfig.period == period.value
        ).first()

    if row is None:
        logger.warning(
            "Calculation config defaulted",
            extra={"department_id": department_id, "period": period.value}
        )
        return default_config(department_id, period)

    return CalculationConfig.model_validate(row)


def resolve_for_kpi(db: Session, kpi: KPISchema) -> CalculationConfig:
    return resolve(db, kpi.department_id, kpi.period)


def update_config(
    db: Session,
    department_id: int,
    period: Union[Period, str],
    update: CalculationConfigUpdate
) -> CalculationConfig:
    period = Period(period)
    row = db.query(DepartmentCalculationConfig).filter(
        DepartmentCalculationConfig.department_id == department_id,
        DepartmentCalculationConfig.period == period.value
    ).first()

    if row is None:
        base = default_config(department_id, period)
        row = DepartmentCalculationConfig(
            department_id=department_id,
            period=period.value,
            enable_employee_self_rating=base.enable_employee_self_rating,
        )
        db.add(row)
        current = {name: getattr(base, name) for name in METHOD_FLAGS}
    else:
        current = {name: getattr(row, name) for name in METHOD_FLAGS}

    changes = update.model_dump(exclude_unset=True)
    for name, value in enforce_exclusivity(current, changes).items():
        setattr(row, name, value)
    if changes.get("enable_employee_self_rating") is not None:
        row.enable_employee_self_rating = changes["enable_employee_self_rating"]

    try:
        db.commit()
        db.refresh(row)
    except Exception:
        db.rollback()
        raise

    config = CalculationConfig.model_validate(row)
    logger.info(
        f"Calculation config updated for department {department_id} ({period.value}): "
        f"{calculation_method_name(config)}"
    )
    return config
