from typing import Any, Optional

from kpi_review.models.audit_log import AuditLog
from kpi_review.services.base import BaseService


def sanitize(obj: Any) -> Any:
    """Make pydantic models, enums and dates JSON-column safe."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if isinstance(obj, dict):
        return {k: sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize(i) for i in obj]
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    if hasattr(obj, "value") and isinstance(obj, str):
        return obj.value
    return obj


class AuditService(BaseService):
    def log_transition(
        self,
        action: str,
        review_id: Optional[int],
        actor_role: Optional[str],
        details: dict,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None
    ):
        """
        Append an audit entry for a review transition.
        Strictly append-only. Not committed here: the entry rides on the
        caller's transaction so it disappears if the transition rolls back.
        """
        try:
            entry = AuditLog(
                action=action,
                entity_type="kpi_review",
                entity_id=review_id,
                actor_role=actor_role,
                details=sanitize(details),
                before_state=sanitize(before_state),
                after_state=sanitize(after_state)
            )
            self.db.add(entry)
            self.db.flush()
            return entry
        except Exception as e:
            # An audit failure must not block the transition itself
            self._logger.error(f"FAILED TO AUDIT LOG: {e}", exc_info=True)
            return None

    # Static wrapper for call sites without a service instance
    @staticmethod
    def log(db, *args, **kwargs):
        return AuditService(db).log_transition(*args, **kwargs)
