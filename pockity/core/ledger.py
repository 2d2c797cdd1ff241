"""
Usage ledger.

Per-tenant running counters of bytes and objects stored. The counters
approximate the true contents of the tenant's prefix: they are adjusted
after each successful store write or delete, and nothing ties the two
together atomically. ``reconcile`` resets them from an authoritative
listing.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List

from ..storage.models import Quota, StoredObject, UsageRecord
from ..storage.repository import UsageRepository
from .audit import AuditAction, AuditLog
from .errors import ValidationFailure
from .tenant import TenantRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageWithQuota:
    usage: UsageRecord
    quota: Quota
    usage_percentage: Dict[str, float]


@dataclass(frozen=True)
class ReconcileResult:
    """Ledger state before and after a reconciliation."""
    tenant_id: str
    previous: UsageRecord
    current: UsageRecord

    @property
    def bytes_drift(self) -> int:
        return self.previous.bytes_used - self.current.bytes_used

    @property
    def objects_drift(self) -> int:
        return self.previous.object_count - self.current.object_count

    @property
    def in_sync(self) -> bool:
        return self.bytes_drift == 0 and self.objects_drift == 0


def _percentage(used: int, limit: int) -> float:
    if limit <= 0:
        return 100.0
    return min(100.0, max(0.0, used / limit * 100))


def _check_delta(delta_bytes: int) -> None:
    if delta_bytes < 0:
        raise ValidationFailure("delta_bytes must be >= 0")


class UsageLedger:
    """Tracks bytes_used/object_count per tenant."""

    def __init__(self, repository: UsageRepository, audit: AuditLog):
        self.repository = repository
        self.audit = audit

    def get_usage(self, tenant: TenantRef) -> UsageRecord:
        """Current usage, initializing a zero record on first query."""
        return self.repository.get_or_create(tenant.tenant_id)

    def overview(self) -> List[UsageRecord]:
        """Every tenant that has a usage record, ordered by tenant id."""
        return self.repository.list_all()

    def increment(self, tenant: TenantRef, delta_bytes: int, file_name: str) -> UsageRecord:
        """Account for one stored object of ``delta_bytes``."""
        _check_delta(delta_bytes)
        record = self.repository.upsert_increment(tenant.tenant_id, delta_bytes)
        self._record_upload(tenant, delta_bytes, file_name)
        return record

    def decrement(self, tenant: TenantRef, delta_bytes: int, file_name: str) -> UsageRecord:
        """Account for one removed object; counters never go below zero.

        Clamping hides earlier drift instead of repairing it.
        """
        _check_delta(delta_bytes)
        record = self.repository.decrement_clamped(tenant.tenant_id, delta_bytes)
        self.audit.record(
            AuditAction.STORAGE_DELETE,
            tenant_id=tenant.tenant_id,
            detail=f"Deleted file: {file_name}",
            file_name=file_name,
            file_size_bytes=delta_bytes,
        )
        return record

    def reserve(self, tenant: TenantRef, delta_bytes: int, quota: Quota) -> bool:
        """Conditionally increment; False means the quota would be exceeded."""
        _check_delta(delta_bytes)
        return self.repository.reserve(
            tenant.tenant_id, delta_bytes, quota.max_bytes, quota.max_objects
        )

    def confirm_reservation(self, tenant: TenantRef, delta_bytes: int, file_name: str) -> None:
        """Record the upload behind a reservation once the object is stored."""
        self._record_upload(tenant, delta_bytes, file_name)

    def release(self, tenant: TenantRef, delta_bytes: int) -> UsageRecord:
        """Undo a reservation whose store write never happened."""
        _check_delta(delta_bytes)
        return self.repository.decrement_clamped(tenant.tenant_id, delta_bytes)

    def _record_upload(self, tenant: TenantRef, delta_bytes: int, file_name: str) -> None:
        self.audit.record(
            AuditAction.STORAGE_UPLOAD,
            tenant_id=tenant.tenant_id,
            detail=f"Uploaded file: {file_name}",
            file_name=file_name,
            file_size_bytes=delta_bytes,
        )

    def get_usage_with_quota(self, tenant: TenantRef, quota: Quota) -> UsageWithQuota:
        usage = self.get_usage(tenant)
        return UsageWithQuota(
            usage=usage,
            quota=quota,
            usage_percentage={
                "bytes": _percentage(usage.bytes_used, quota.max_bytes),
                "objects": _percentage(usage.object_count, quota.max_objects),
            },
        )

    def reconcile(self, tenant: TenantRef, objects: Iterable[StoredObject]) -> ReconcileResult:
        """Overwrite the counters with the totals of ``objects``."""
        objects = list(objects)
        previous = self.get_usage(tenant)
        current = self.repository.set_usage(
            tenant.tenant_id,
            bytes_used=sum(obj.size_bytes for obj in objects),
            object_count=len(objects),
        )
        result = ReconcileResult(tenant_id=tenant.tenant_id, previous=previous, current=current)

        if not result.in_sync:
            logger.warning(
                "Ledger drift for %s: %d bytes, %d objects",
                tenant.tenant_id, result.bytes_drift, result.objects_drift
            )
        self.audit.record(
            AuditAction.LEDGER_RECONCILE,
            tenant_id=tenant.tenant_id,
            detail="Reconciled usage with object listing",
            bytes_drift=result.bytes_drift,
            objects_drift=result.objects_drift,
        )
        return result
