"""
Stage labels shown on every dashboard and list.

derive_stage is the single place the (KPI status, review status, rejection
resolution) triple is turned into a label; surfaces must not re-derive it.
"""
from typing import Iterable, Optional, Tuple

from kpi_review.models.kpi import KPIStatus
from kpi_review.models.kpi_review import ReviewStatus, RejectionResolvedStatus
from kpi_review.schemas.kpi import KPISchema
from kpi_review.schemas.review import KPIReviewSchema
from kpi_review.schemas.stage import StageCategory, StageCounts, StageInfo
from kpi_review.services.review_state_machine import current_resolution, current_status

AWAITING_ACKNOWLEDGEMENT = StageInfo(label="KPI Setting - Awaiting Acknowledgement", category=StageCategory.SETTING)
REVIEW_PENDING = StageInfo(label="KPI Acknowledged - Review Pending", category=StageCategory.REVIEW_PENDING)
REJECTION_RESOLVED = StageInfo(label="Rejection Resolved", category=StageCategory.RESOLVED)

REVIEW_STAGES = {
    ReviewStatus.PENDING: StageInfo(
        label="KPI Review - Self-Rating Required", category=StageCategory.SELF_RATING_REQUIRED
    ),
    ReviewStatus.EMPLOYEE_SUBMITTED: StageInfo(
        label="Self-Rating Submitted - Awaiting Manager Review", category=StageCategory.AWAITING_MANAGER
    ),
    ReviewStatus.MANAGER_SUBMITTED: StageInfo(
        label="Awaiting Your Confirmation", category=StageCategory.AWAITING_CONFIRMATION
    ),
    ReviewStatus.COMPLETED: StageInfo(label="KPI Review Completed", category=StageCategory.COMPLETED),
    ReviewStatus.REJECTED: StageInfo(label="Review Rejected", category=StageCategory.REJECTED),
}


def derive_stage(kpi: KPISchema, review: Optional[KPIReviewSchema] = None) -> StageInfo:
    if KPIStatus(kpi.status) == KPIStatus.PENDING:
        return AWAITING_ACKNOWLEDGEMENT

    status = current_status(review)
    if status == ReviewStatus.NONE:
        # Who moves first is reported by allowed_actions, not by the label
        return REVIEW_PENDING

    if status == ReviewStatus.REJECTED and current_resolution(review) == RejectionResolvedStatus.RESOLVED:
        return REJECTION_RESOLVED
    return REVIEW_STAGES[status]


def calculate_stage_counts(entries: Iterable[Tuple[KPISchema, Optional[KPIReviewSchema]]]) -> StageCounts:
    counts = StageCounts()
    for kpi, review in entries:
        counts.total_kpis += 1
        category = derive_stage(kpi, review).category
        setattr(counts, category.value, getattr(counts, category.value) + 1)
    return counts
