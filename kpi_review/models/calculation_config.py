"""
Department calculation settings.
One row per (department, period type): quarterly and yearly KPIs are
configured independently.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from kpi_review.database import Base


class DepartmentCalculationConfig(Base):
    __tablename__ = "calculation_configs"
    __table_args__ = (
        UniqueConstraint("department_id", "period", name="uq_calculation_config_department_period"),
    )

    id = Column(Integer, primary_key=True, index=True)
    department_id = Column(Integer, nullable=False, index=True)
    period = Column(String(20), nullable=False)

    # Exactly one of the three calculation flags is true (enforced on write)
    use_goal_weight = Column(Boolean, default=False, nullable=False)
    use_actual_values = Column(Boolean, default=False, nullable=False)
    use_normal_calculation = Column(Boolean, default=True, nullable=False)
    enable_employee_self_rating = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<DepartmentCalculationConfig dept={self.department_id} {self.period}>"
