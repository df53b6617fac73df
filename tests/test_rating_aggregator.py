import pytest

from kpi_review.models.item_rating import RaterRole
from kpi_review.schemas.calculation_config import CalculationMethod
from kpi_review.schemas.kpi import KPIItemSchema, parse_goal_weight
from kpi_review.schemas.rating import ItemRatingSchema
from kpi_review.services.rating_aggregator import aggregate, percentage_obtained, performance_band


def _items(*weights, qualitative=()):
    items = [
        KPIItemSchema(id=i, title=f"Item {i}", target_value=100, goal_weight=w)
        for i, w in enumerate(weights, start=1)
    ]
    for offset, _ in enumerate(qualitative):
        items.append(KPIItemSchema(id=100 + offset, title="Teamwork", is_qualitative=True))
    return items


def _ratings(role, values):
    return [
        ItemRatingSchema(kpi_item_id=item_id, rater_role=role, rating_value=value)
        for item_id, value in values.items()
    ]


def test_normal_calculation_is_the_mean():
    items = _items(None, None, None)
    ratings = _ratings(RaterRole.EMPLOYEE, {1: 1.0, 2: 1.25, 3: 1.5})
    result = aggregate(items, ratings, CalculationMethod.NORMAL, RaterRole.EMPLOYEE)
    assert result.total == pytest.approx(1.25)
    assert result.eligible_items == 3
    assert result.degenerate is False


def test_goal_weight_calculation():
    items = _items(0.3, 0.3, 0.4)
    ratings = _ratings(RaterRole.MANAGER, {1: 1.0, 2: 1.25, 3: 1.5})
    result = aggregate(items, ratings, CalculationMethod.GOAL_WEIGHT, RaterRole.MANAGER)
    assert result.total == pytest.approx(1.275)
    assert result.total_weight == pytest.approx(1.0)
    assert result.per_item[3] == pytest.approx(0.6)


def test_actual_vs_target_uses_manager_values():
    items = [
        KPIItemSchema(id=1, title="Revenue", target_value=100, goal_weight=0.5),
        KPIItemSchema(id=2, title="Accounts", target_value=50, goal_weight=0.5),
    ]
    ratings = [
        ItemRatingSchema(kpi_item_id=1, rater_role=RaterRole.MANAGER, actual_value=80),
        ItemRatingSchema(kpi_item_id=2, rater_role=RaterRole.MANAGER, actual_value=50),
    ]
    result = aggregate(items, ratings, CalculationMethod.ACTUAL_VS_TARGET, RaterRole.MANAGER)

    first = result.breakdown[0]
    assert first.percentage_value_obtained == pytest.approx(80.0)
    assert first.manager_rating_percentage == pytest.approx(40.0)
    assert result.total == pytest.approx(90.0)


def test_actual_vs_target_zero_target_contributes_nothing():
    items = [KPIItemSchema(id=1, title="Revenue", target_value=0, goal_weight=1.0)]
    ratings = [ItemRatingSchema(kpi_item_id=1, rater_role=RaterRole.MANAGER, actual_value=80)]
    result = aggregate(items, ratings, CalculationMethod.ACTUAL_VS_TARGET, RaterRole.MANAGER)
    assert result.total == 0.0


def test_actual_vs_target_has_no_employee_aggregate():
    items = _items(0.5, 0.5)
    ratings = _ratings(RaterRole.EMPLOYEE, {1: 1.5, 2: 1.5})
    result = aggregate(items, ratings, CalculationMethod.ACTUAL_VS_TARGET, RaterRole.EMPLOYEE)
    assert result.total == 0.0
    assert result.breakdown == []


def test_qualitative_items_are_excluded():
    items = _items(None, None, qualitative=["teamwork"])
    ratings = _ratings(RaterRole.EMPLOYEE, {1: 1.0, 2: 1.5, 100: 1.5})
    result = aggregate(items, ratings, CalculationMethod.NORMAL, RaterRole.EMPLOYEE)
    assert result.eligible_items == 2
    assert result.total == pytest.approx(1.25)
    assert 100 not in result.per_item


def test_all_qualitative_kpi_is_degenerate():
    items = [KPIItemSchema(id=1, title="Teamwork", is_qualitative=True)]
    result = aggregate(items, [], CalculationMethod.NORMAL, RaterRole.MANAGER)
    assert result.degenerate is True
    assert result.total == 0.0


def test_missing_and_malformed_ratings_count_as_zero():
    items = _items(None, None)
    ratings = [ItemRatingSchema(kpi_item_id=1, rater_role=RaterRole.EMPLOYEE, rating_value="abc")]
    result = aggregate(items, ratings, CalculationMethod.NORMAL, RaterRole.EMPLOYEE)
    assert result.per_item == {1: 0.0, 2: 0.0}
    assert result.total == 0.0


def test_other_role_ratings_are_ignored():
    items = _items(None)
    ratings = _ratings(RaterRole.MANAGER, {1: 1.5})
    result = aggregate(items, ratings, CalculationMethod.NORMAL, RaterRole.EMPLOYEE)
    assert result.total == 0.0


@pytest.mark.parametrize("raw", ["30%", 30, 0.3, "0.3"])
def test_parse_goal_weight_returns_fraction(raw):
    assert parse_goal_weight(raw) == pytest.approx(0.3)


def test_parse_goal_weight_blank_is_none():
    assert parse_goal_weight("") is None
    assert parse_goal_weight("n/a") is None


def test_percentage_helpers():
    assert percentage_obtained(45, 60) == pytest.approx(75.0)
    assert percentage_obtained(None, 60) == 0.0
    assert performance_band(100) == "exceeded"
    assert performance_band(75) == "on_track"
    assert performance_band(50) == "at_risk"
    assert performance_band(10) == "off_track"
    assert performance_band(None) == "not_rated"


def test_parse_goal_weight_reads_whole_numbers_as_percent():
    assert parse_goal_weight(150) == pytest.approx(1.5)
    assert parse_goal_weight("150%") == pytest.approx(1.5)


def test_parse_goal_weight_leaves_fractional_overflow_alone():
    assert parse_goal_weight(1.5) == 1.5
    assert parse_goal_weight("1.5") == 1.5
