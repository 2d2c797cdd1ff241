"""
Audit sink.

Records notable actions without ever failing the operation that triggered
them.
"""

import logging
from enum import Enum
from typing import List, Optional

from ..storage.models import AuditEvent
from ..storage.repository import AuditLogRepository

logger = logging.getLogger(__name__)


class AuditAction(Enum):
    STORAGE_UPLOAD = "STORAGE_UPLOAD"
    STORAGE_DELETE = "STORAGE_DELETE"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    LEDGER_RECONCILE = "LEDGER_RECONCILE"
    API_KEY_CREATE = "API_KEY_CREATE"
    API_KEY_REVOKE = "API_KEY_REVOKE"
    API_KEY_REQUEST_CREATE = "API_KEY_REQUEST_CREATE"
    API_KEY_REQUEST_APPROVE = "API_KEY_REQUEST_APPROVE"
    API_KEY_REQUEST_REJECT = "API_KEY_REQUEST_REJECT"
    API_KEY_UPGRADE_REQUEST = "API_KEY_UPGRADE_REQUEST"
    API_KEY_UPGRADE_APPROVE = "API_KEY_UPGRADE_APPROVE"
    API_KEY_UPGRADE_REJECT = "API_KEY_UPGRADE_REJECT"


class AuditLog:
    """Fire-and-forget audit recorder backed by the audit_log table."""

    def __init__(self, repository: AuditLogRepository):
        self.repository = repository

    def record(
        self,
        action: AuditAction,
        tenant_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        detail: Optional[str] = None,
        **metadata
    ) -> None:
        """Persist an audit event. Failures are logged and swallowed."""
        event = AuditEvent(
            action=action.value,
            tenant_id=tenant_id,
            actor_id=actor_id,
            detail=detail,
            metadata=metadata,
        )
        try:
            self.repository.insert(event)
        except Exception:
            logger.exception("Failed to record audit event %s for %s", action.value, tenant_id)
            return
        logger.info("AUDIT %s tenant=%s actor=%s %s", action.value, tenant_id, actor_id, detail or "")

    def recent(self, limit: int = 100, tenant_id: Optional[str] = None) -> List[AuditEvent]:
        return self.repository.recent(limit=limit, tenant_id=tenant_id)
