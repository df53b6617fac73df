from sqlalchemy import Column, Integer, String, Float, Text, Date, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from kpi_review.database import Base
import enum


class ReviewStatus(str, enum.Enum):
    NONE = "none"  # no review row exists; never stored
    PENDING = "pending"
    EMPLOYEE_SUBMITTED = "employee_submitted"
    MANAGER_SUBMITTED = "manager_submitted"
    COMPLETED = "completed"
    REJECTED = "rejected"

    @classmethod
    def _missing_(cls, value):
        # Legacy label for the same state; accepted on read, never written
        if isinstance(value, str) and value.strip().lower() == "awaiting_employee_confirmation":
            return cls.MANAGER_SUBMITTED
        return None


class RejectionResolvedStatus(str, enum.Enum):
    NONE = "none"
    RESOLVED = "resolved"


class KPIReview(Base):
    __tablename__ = "kpi_reviews"

    id = Column(Integer, primary_key=True, index=True)
    kpi_id = Column(Integer, ForeignKey("kpis.id"), nullable=False, unique=True, index=True)
    employee_id = Column(Integer, nullable=False, index=True)
    manager_id = Column(Integer, nullable=False, index=True)

    review_status = Column(String(40), nullable=False, default=ReviewStatus.PENDING.value, index=True)

    # Employee self-rating
    employee_rating = Column(Float, nullable=True)
    employee_final_rating = Column(Float, nullable=True)
    employee_comment = Column(Text, nullable=True)
    employee_signature = Column(Text, nullable=True)
    self_review_date = Column(Date, nullable=True)
    major_accomplishments = Column(Text, nullable=True)
    disappointments = Column(Text, nullable=True)
    improvement_needed = Column(Text, nullable=True)
    future_plan = Column(Text, nullable=True)
    employee_submitted_at = Column(DateTime(timezone=True), nullable=True)

    # Manager rating
    manager_rating = Column(Float, nullable=True)
    manager_final_rating = Column(Float, nullable=True)
    manager_comment = Column(Text, nullable=True)
    manager_signature = Column(Text, nullable=True)
    manager_submitted_at = Column(DateTime(timezone=True), nullable=True)

    # Employee confirmation
    employee_confirmation_signature = Column(Text, nullable=True)
    employee_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    employee_rejection_note = Column(Text, nullable=True)

    # HR resolution of a rejection
    rejection_resolved_status = Column(String(20), nullable=False, default=RejectionResolvedStatus.NONE.value)
    rejection_resolved_note = Column(Text, nullable=True)
    rejection_resolved_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    kpi = relationship("KPI", back_populates="review")
    accomplishments = relationship(
        "ReviewAccomplishment",
        back_populates="review",
        order_by="ReviewAccomplishment.item_order",
        cascade="all, delete-orphan",
    )
    ratings = relationship("ItemRating", order_by="ItemRating.kpi_item_id", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<KPIReview {self.id} kpi={self.kpi_id} status={self.review_status}>"


class ReviewAccomplishment(Base):
    __tablename__ = "review_accomplishments"

    id = Column(Integer, primary_key=True, index=True)
    review_id = Column(Integer, ForeignKey("kpi_reviews.id", ondelete="CASCADE"), nullable=False, index=True)
    item_order = Column(Integer, nullable=False, default=1)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    employee_rating = Column(Float, nullable=True)

    review = relationship("KPIReview", back_populates="accomplishments")
