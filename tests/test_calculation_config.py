import pytest
from pydantic import ValidationError as PydanticValidationError

from kpi_review.models.calculation_config import DepartmentCalculationConfig
from kpi_review.schemas.calculation_config import CalculationConfig, CalculationConfigUpdate, CalculationMethod
from kpi_review.services import calculation_config as config_service


NORMAL = {"use_normal_calculation": True, "use_goal_weight": False, "use_actual_values": False}


def test_switching_on_a_method_turns_the_others_off():
    flags = config_service.enforce_exclusivity(NORMAL, {"use_goal_weight": True})
    assert flags == {"use_normal_calculation": False, "use_goal_weight": True, "use_actual_values": False}

    flags = config_service.enforce_exclusivity(flags, {"use_actual_values": True})
    assert flags == {"use_normal_calculation": False, "use_goal_weight": False, "use_actual_values": True}


def test_switching_everything_off_falls_back_to_normal():
    current = {"use_normal_calculation": False, "use_goal_weight": True, "use_actual_values": False}
    flags = config_service.enforce_exclusivity(current, {"use_goal_weight": False})
    assert flags["use_normal_calculation"] is True
    assert sum(flags.values()) == 1


def test_config_requires_exactly_one_method():
    with pytest.raises(PydanticValidationError):
        CalculationConfig(period="quarterly", use_normal_calculation=True, use_goal_weight=True)


@pytest.mark.parametrize("flags,method", [
    ({}, CalculationMethod.NORMAL),
    ({"use_normal_calculation": False, "use_goal_weight": True}, CalculationMethod.GOAL_WEIGHT),
    ({"use_normal_calculation": False, "use_actual_values": True}, CalculationMethod.ACTUAL_VS_TARGET),
])
def test_calculation_method(flags, method):
    config = CalculationConfig(period="yearly", **flags)
    assert config_service.calculation_method(config) == method
    assert config_service.calculation_method_name(config) == method.value


def test_requirement_helpers():
    actual = CalculationConfig(period="quarterly", use_normal_calculation=False, use_actual_values=True)
    assert config_service.are_goal_weights_required(actual) is True
    assert config_service.are_actual_values_required(actual) is True

    normal = CalculationConfig(period="quarterly")
    assert config_service.are_goal_weights_required(normal) is False


def test_missing_config_resolves_to_default(db_session):
    config = config_service.resolve(db_session, 99, "quarterly")
    assert config.is_default is True
    assert config_service.calculation_method(config) == CalculationMethod.NORMAL
    assert config_service.is_self_rating_enabled(config) is True

    notices = config_service.config_notices(config)
    assert len(notices) == 1
    assert notices[0].to_dict()["code"] == "CONFIGURATION_DEFAULTED"


def test_periods_are_configured_independently(db_session, make_config):
    make_config(department_id=10, period="quarterly", method="goal_weight")
    quarterly = config_service.resolve(db_session, 10, "quarterly")
    yearly = config_service.resolve(db_session, 10, "yearly")

    assert config_service.calculation_method(quarterly) == CalculationMethod.GOAL_WEIGHT
    assert quarterly.is_default is False
    assert yearly.is_default is True


def test_update_config_upserts_and_stays_exclusive(db_session):
    config = config_service.update_config(
        db_session, 10, "yearly", CalculationConfigUpdate(use_actual_values=True, enable_employee_self_rating=False)
    )
    assert config_service.calculation_method(config) == CalculationMethod.ACTUAL_VS_TARGET
    assert config.enable_employee_self_rating is False

    config = config_service.update_config(db_session, 10, "yearly", CalculationConfigUpdate(use_goal_weight=True))
    assert config_service.calculation_method(config) == CalculationMethod.GOAL_WEIGHT
    assert config.use_actual_values is False
    # Untouched fields keep their stored value
    assert config.enable_employee_self_rating is False
    assert db_session.query(DepartmentCalculationConfig).count() == 1
