from typing import Any, List, Optional, Sequence, Union

from kpi_review.core.config import settings
from kpi_review.models.kpi import Period
from kpi_review.schemas.kpi import coerce_number
from kpi_review.schemas.rating import NormalizedRating, RatingOption


def allowed_values(options: Optional[Sequence[float]] = None) -> List[float]:
    return sorted(options if options else settings.ratings.self_rating_values)


def normalize(raw_value: Any, options: Optional[Sequence[float]] = None) -> float:
    """
    Snap a computed self-rating to the nearest allowed value.

    Options are scanned in ascending order and only a strictly closer option
    replaces the current best, so an exact midpoint resolves to the lower
    value: normalize(1.375) == 1.25. Malformed input counts as 0.
    """
    values = allowed_values(options)
    value = coerce_number(raw_value) or 0.0
    nearest = values[0]
    for option in values:
        if abs(value - option) < abs(value - nearest):
            nearest = option
    return nearest


def rating_label(value: Optional[float]) -> str:
    value = coerce_number(value)
    if value is None or value <= 0:
        return "Not Rated"
    if value >= 1.4:
        return "Exceeds Expectation"
    if value >= 1.15:
        return "Meets Expectation"
    return "Below Expectation"


def normalize_with_label(raw_value: Any) -> NormalizedRating:
    normalized = normalize(raw_value)
    return NormalizedRating(
        raw_value=coerce_number(raw_value) or 0.0,
        normalized_value=normalized,
        label=rating_label(normalized),
    )


def rating_options(period: Union[Period, str] = Period.QUARTERLY) -> List[RatingOption]:
    period = Period(period)
    return [
        RatingOption(rating_value=value, label=rating_label(value), rating_type=period.value)
        for value in allowed_values()
    ]
