"""
Item Rating Aggregator

Turns a KPI's items and the per-item ratings of one rater into per-item
contributions and a KPI-level total, under one of three methods:

- Normal Calculation: mean of the item ratings.
- Goal Weight Calculation: sum of rating x goal weight.
- Actual vs Target Values: sum of (actual / target x 100) x goal weight,
  manager ratings only.

Qualitative items never take part in any method. A missing or malformed
rating counts as 0; flagging "not submitted" is the caller's job.
"""
import math
from typing import Callable, Dict, Iterable, List, Optional, Union

from kpi_review.models.item_rating import RaterRole
from kpi_review.schemas.calculation_config import CalculationMethod
from kpi_review.schemas.kpi import KPIItemSchema
from kpi_review.schemas.rating import AggregationResult, ItemContribution, ItemRatingSchema


def numeric_items(items: Iterable[KPIItemSchema]) -> List[KPIItemSchema]:
    return [item for item in items if not item.is_qualitative]


def ratings_by_item(ratings: Iterable[ItemRatingSchema], rater_role: RaterRole) -> Dict[int, ItemRatingSchema]:
    """Latest rating per item for one role (upsert semantics)."""
    by_item: Dict[int, ItemRatingSchema] = {}
    for rating in ratings:
        if RaterRole(rating.rater_role) == rater_role:
            by_item[rating.kpi_item_id] = rating
    return by_item


def rating_value(rating: Optional[ItemRatingSchema]) -> float:
    if rating is None or rating.rating_value is None:
        return 0.0
    value = rating.rating_value
    return value if math.isfinite(value) else 0.0


def percentage_obtained(actual_value: Optional[float], target_value: Optional[float]) -> float:
    if actual_value is None or not target_value:
        return 0.0
    return (actual_value / target_value) * 100


def performance_band(percentage: Optional[float]) -> str:
    """Display band for an Actual vs Target percentage."""
    if percentage is None:
        return "not_rated"
    if percentage >= 100:
        return "exceeded"
    if percentage >= 75:
        return "on_track"
    if percentage >= 50:
        return "at_risk"
    return "off_track"


def _normal(items: List[KPIItemSchema], by_item: Dict[int, ItemRatingSchema], result: AggregationResult):
    total = 0.0
    for item in items:
        value = rating_value(by_item.get(item.id))
        result.per_item[item.id] = value
        result.breakdown.append(ItemContribution(kpi_item_id=item.id, rating_value=value, contribution=value))
        total += value
    result.total = total / len(items)


def _goal_weight(items: List[KPIItemSchema], by_item: Dict[int, ItemRatingSchema], result: AggregationResult):
    for item in items:
        value = rating_value(by_item.get(item.id))
        weight = item.goal_weight or 0.0
        contribution = value * weight
        result.per_item[item.id] = contribution
        result.breakdown.append(ItemContribution(
            kpi_item_id=item.id,
            rating_value=value,
            goal_weight=weight,
            contribution=contribution,
        ))
        result.total += contribution
        result.total_weight += weight


def _actual_vs_target(items: List[KPIItemSchema], by_item: Dict[int, ItemRatingSchema], result: AggregationResult):
    for item in items:
        rating = by_item.get(item.id)
        # Manager-entered values win over the values set at KPI setting time
        actual = rating.actual_value if rating and rating.actual_value is not None else item.actual_value
        target = rating.target_value if rating and rating.target_value is not None else item.target_value
        if rating and rating.goal_weight is not None:
            weight = rating.goal_weight
        else:
            weight = item.goal_weight or 0.0

        obtained = percentage_obtained(actual, target)
        weighted = obtained * weight
        result.per_item[item.id] = weighted
        result.breakdown.append(ItemContribution(
            kpi_item_id=item.id,
            rating_value=rating_value(rating),
            goal_weight=weight,
            contribution=weighted,
            percentage_value_obtained=obtained,
            manager_rating_percentage=weighted,
        ))
        result.total += weighted
        result.total_weight += weight


_CALCULATORS: Dict[CalculationMethod, Callable] = {
    CalculationMethod.NORMAL: _normal,
    CalculationMethod.GOAL_WEIGHT: _goal_weight,
    CalculationMethod.ACTUAL_VS_TARGET: _actual_vs_target,
}


def aggregate(
    items: Iterable[KPIItemSchema],
    ratings: Iterable[ItemRatingSchema],
    method: Union[CalculationMethod, str],
    rater_role: Union[RaterRole, str],
) -> AggregationResult:
    method = CalculationMethod(method)
    rater_role = RaterRole(rater_role)
    eligible = numeric_items(items)

    result = AggregationResult(
        method=method,
        rater_role=rater_role,
        eligible_items=len(eligible),
        degenerate=not eligible,
    )
    if not eligible:
        return result
    # Actual vs Target has no employee-side aggregate
    if method == CalculationMethod.ACTUAL_VS_TARGET and rater_role == RaterRole.EMPLOYEE:
        return result

    _CALCULATORS[method](eligible, ratings_by_item(ratings, rater_role), result)
    return result
