"""
Quota policy.

Resolves a tenant's effective limits and decides whether a prospective
write fits within them.

The check reads the ledger and does not reserve anything. Two callers
evaluating the same tenant before either increments both see the same
headroom; that is the best-effort contract.
"""

import logging
from dataclasses import dataclass

from ..storage.models import Quota, UsageRecord
from ..storage.repository import LimitsRepository
from .audit import AuditAction, AuditLog
from .errors import ValidationFailure
from .ledger import UsageLedger
from .tenant import TenantRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaEvaluation:
    """Outcome of checking an incoming write against a quota."""
    can_upload: bool
    quota_exceeded: bool
    max_bytes: int
    max_objects: int


def check_quota(usage: UsageRecord, quota: Quota, incoming_bytes: int) -> QuotaEvaluation:
    """Pure comparison of usage plus one incoming object against a quota."""
    bytes_exceeded = usage.bytes_used + incoming_bytes > quota.max_bytes
    objects_exceeded = usage.object_count + 1 > quota.max_objects
    quota_exceeded = bytes_exceeded or objects_exceeded
    return QuotaEvaluation(
        can_upload=not quota_exceeded,
        quota_exceeded=quota_exceeded,
        max_bytes=quota.max_bytes,
        max_objects=quota.max_objects,
    )


class QuotaPolicy:
    """Stored limits with a fixed fallback."""

    def __init__(
        self,
        limits: LimitsRepository,
        ledger: UsageLedger,
        audit: AuditLog,
        default_quota: Quota
    ):
        self.limits = limits
        self.ledger = ledger
        self.audit = audit
        self.default_quota = default_quota

    def resolve_limits(self, tenant: TenantRef) -> Quota:
        """The tenant's configured limits, or the default when none are stored."""
        return self.limits.get(tenant.tenant_id) or self.default_quota

    def evaluate(self, tenant: TenantRef, incoming_bytes: int) -> QuotaEvaluation:
        """Check whether one more object of ``incoming_bytes`` would fit.

        Records a QUOTA_EXCEEDED audit event when it would not.
        """
        if incoming_bytes < 0:
            raise ValidationFailure("incoming_bytes must be >= 0")

        quota = self.resolve_limits(tenant)
        usage = self.ledger.get_usage(tenant)
        evaluation = check_quota(usage, quota, incoming_bytes)

        if evaluation.quota_exceeded:
            logger.info(
                "Quota exceeded for %s: %d + %d bytes against %d, %d objects against %d",
                tenant.tenant_id, usage.bytes_used, incoming_bytes, quota.max_bytes,
                usage.object_count, quota.max_objects
            )
            self.audit.record(
                AuditAction.QUOTA_EXCEEDED,
                tenant_id=tenant.tenant_id,
                detail="Upload would exceed quota limits",
                incoming_bytes=incoming_bytes,
                bytes_used=usage.bytes_used,
                object_count=usage.object_count,
                max_bytes=quota.max_bytes,
                max_objects=quota.max_objects,
            )
        return evaluation
