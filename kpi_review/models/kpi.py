from sqlalchemy import Column, Integer, String, Float, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from kpi_review.database import Base
import enum


class Period(str, enum.Enum):
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class KPIStatus(str, enum.Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"


class QualitativeRating(str, enum.Enum):
    EXCEEDS = "exceeds"
    MEETS = "meets"
    NEEDS_IMPROVEMENT = "needs_improvement"


class KPI(Base):
    __tablename__ = "kpis"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, nullable=False, index=True)
    manager_id = Column(Integer, nullable=False, index=True)
    department_id = Column(Integer, nullable=True, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    period = Column(String(20), nullable=False, default=Period.QUARTERLY.value)
    quarter = Column(String(10), nullable=True)  # e.g. "Q1"; null for yearly KPIs
    year = Column(Integer, nullable=False)

    status = Column(String(20), nullable=False, default=KPIStatus.PENDING.value)
    employee_signature = Column(Text, nullable=True)
    manager_signature = Column(Text, nullable=True)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    items = relationship(
        "KPIItem",
        back_populates="kpi",
        order_by="KPIItem.id",
        cascade="all, delete-orphan",
    )
    review = relationship("KPIReview", back_populates="kpi", uselist=False)

    def __repr__(self):
        return f"<KPI {self.id}: {self.title} ({self.period} {self.quarter or ''} {self.year})>"


class KPIItem(Base):
    __tablename__ = "kpi_items"

    id = Column(Integer, primary_key=True, index=True)
    kpi_id = Column(Integer, ForeignKey("kpis.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    target_value = Column(Float, nullable=True)  # null for qualitative items
    actual_value = Column(Float, nullable=True)
    measure_unit = Column(String(50), nullable=True)
    goal_weight = Column(Float, nullable=True)  # fraction of the whole KPI, 0-1

    is_qualitative = Column(Boolean, default=False, nullable=False)
    qualitative_rating = Column(String(30), nullable=True)  # manager only

    kpi = relationship("KPI", back_populates="items")
