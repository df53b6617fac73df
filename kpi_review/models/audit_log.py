from sqlalchemy import Column, Integer, String, JSON, DateTime
from sqlalchemy.sql import func
from kpi_review.database import Base


class AuditLog(Base):
    """Append-only record of review state transitions."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=True, index=True)
    actor_role = Column(String(20), nullable=True)
    details = Column(JSON, nullable=True)
    before_state = Column(JSON, nullable=True)
    after_state = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
