from sqlalchemy import Column, Integer, String, Float, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from kpi_review.database import Base
import enum


class RaterRole(str, enum.Enum):
    EMPLOYEE = "employee"
    MANAGER = "manager"


class ItemRating(Base):
    """One rater's input for one KPI item. At most one row per (item, role)."""
    __tablename__ = "kpi_item_ratings"
    __table_args__ = (
        UniqueConstraint("kpi_item_id", "rater_role", name="uq_item_rating_item_role"),
    )

    id = Column(Integer, primary_key=True, index=True)
    kpi_review_id = Column(Integer, ForeignKey("kpi_reviews.id", ondelete="CASCADE"), nullable=False, index=True)
    kpi_item_id = Column(Integer, ForeignKey("kpi_items.id", ondelete="CASCADE"), nullable=False, index=True)
    rater_role = Column(String(20), nullable=False)

    rating_value = Column(Float, nullable=True)
    qualitative_rating = Column(String(30), nullable=True)
    comment = Column(Text, nullable=True)

    # Manager-entered, only used by the Actual vs Target method
    actual_value = Column(Float, nullable=True)
    target_value = Column(Float, nullable=True)
    goal_weight = Column(Float, nullable=True)

    # Derived, never hand-edited
    percentage_value_obtained = Column(Float, nullable=True)
    manager_rating_percentage = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
