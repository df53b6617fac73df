# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import kpi, item_rating, kpi_review, calculation_config, audit_log

# Explicit class exports for cleaner imports
from .kpi import KPI, KPIItem, KPIStatus, Period, QualitativeRating
from .item_rating import ItemRating, RaterRole
from .kpi_review import KPIReview, ReviewAccomplishment, ReviewStatus, RejectionResolvedStatus
from .calculation_config import DepartmentCalculationConfig
from .audit_log import AuditLog

__all__ = [
    "KPI",
    "KPIItem",
    "KPIStatus",
    "Period",
    "QualitativeRating",
    "ItemRating",
    "RaterRole",
    "KPIReview",
    "ReviewAccomplishment",
    "ReviewStatus",
    "RejectionResolvedStatus",
    "DepartmentCalculationConfig",
    "AuditLog",
]
