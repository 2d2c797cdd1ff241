"""
Storage operations exposed to callers.

Combines the object store gateway, the usage ledger and the quota policy.
The store write and the ledger update are separate steps; by default a
failure between them leaves the two out of sync until the next
``reconcile``.

Enforcement modes:
1. best_effort - evaluate, write, then increment. Concurrent uploads for
   one tenant can all pass the check and overshoot the quota.
2. strict - reserve the usage with a conditional increment first and
   release it if the write fails.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from ..config.loader import DEFAULT_MAX_FILE_SIZE, EnforcementMode
from ..objectstore.gateway import ObjectStoreGateway, validate_file_name
from ..storage.models import StoredObject
from .errors import CapacityExceededError, PockityError, ValidationFailure
from .ledger import ReconcileResult, UsageLedger
from .quota import QuotaEvaluation, QuotaPolicy
from .tenant import TenantRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadResult:
    file_name: str
    key: str
    url: str
    size: int
    content_type: str


@dataclass(frozen=True)
class DeleteResult:
    file_name: str
    size: int


@dataclass(frozen=True)
class BulkDeleteItem:
    file_name: str
    success: bool
    size: int = 0
    error: Optional[str] = None


@dataclass
class BulkDeleteResult:
    results: List[BulkDeleteItem] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for item in self.results if item.success)

    @property
    def failure_count(self) -> int:
        return len(self.results) - self.success_count

    @property
    def total_size_deleted(self) -> int:
        return sum(item.size for item in self.results if item.success)


@dataclass(frozen=True)
class FileInfo:
    file_name: str
    url: str
    size: int
    last_modified: datetime
    content_type: Optional[str]


@dataclass(frozen=True)
class FileListing:
    files: List[StoredObject]

    @property
    def total_files(self) -> int:
        return len(self.files)

    @property
    def total_size(self) -> int:
        return sum(f.size_bytes for f in self.files)


@dataclass(frozen=True)
class UsageReport:
    bytes_used: int
    object_count: int
    last_updated: datetime
    max_bytes: int
    max_objects: int
    usage_percentage: Dict[str, float]


def _capacity_error(evaluation: QuotaEvaluation, file_size: int) -> CapacityExceededError:
    return CapacityExceededError(
        "Upload would exceed quota limits",
        details={
            "quotaExceeded": True,
            "maxBytes": evaluation.max_bytes,
            "maxObjects": evaluation.max_objects,
            "fileSize": file_size,
        },
    )


class StorageService:
    """Upload, delete, list and usage operations for a tenant."""

    def __init__(
        self,
        gateway: ObjectStoreGateway,
        ledger: UsageLedger,
        quota_policy: QuotaPolicy,
        enforcement: EnforcementMode = EnforcementMode.BEST_EFFORT,
        compensate_failed_writes: bool = False,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.quota_policy = quota_policy
        self.enforcement = enforcement
        self.compensate_failed_writes = compensate_failed_writes
        self.max_file_size = max_file_size

    def upload(
        self,
        tenant: TenantRef,
        file_name: str,
        data: bytes,
        content_type: Optional[str] = None
    ) -> UploadResult:
        """Store a file and account for it.

        Raises:
            ValidationFailure: If the name is invalid or the file is too large
            CapacityExceededError: If the upload would exceed the tenant's quota
        """
        validate_file_name(file_name)
        size = len(data)
        if size > self.max_file_size:
            raise ValidationFailure(
                "File too large",
                details={"fileSize": size, "maxFileSize": self.max_file_size},
            )

        if self.enforcement == EnforcementMode.STRICT:
            result = self._upload_strict(tenant, file_name, data, content_type)
        else:
            result = self._upload_best_effort(tenant, file_name, data, content_type)

        return UploadResult(
            file_name=file_name,
            key=result.key,
            url=result.url,
            size=size,
            content_type=content_type or "application/octet-stream",
        )

    def _upload_best_effort(self, tenant, file_name, data, content_type):
        evaluation = self.quota_policy.evaluate(tenant, len(data))
        if not evaluation.can_upload:
            raise _capacity_error(evaluation, len(data))

        result = self.gateway.put(tenant, file_name, data, content_type)
        try:
            self.ledger.increment(tenant, len(data), file_name)
        except PockityError:
            if self.compensate_failed_writes:
                logger.warning("Ledger update failed for %s, removing stored object", result.key)
                self._remove_quietly(tenant, file_name)
            else:
                logger.error("Ledger update failed for %s; usage is now out of sync", result.key)
            raise
        return result

    def _upload_strict(self, tenant, file_name, data, content_type):
        quota = self.quota_policy.resolve_limits(tenant)
        if not self.ledger.reserve(tenant, len(data), quota):
            # evaluate again for the audit event and the error payload
            evaluation = self.quota_policy.evaluate(tenant, len(data))
            raise _capacity_error(evaluation, len(data))

        try:
            result = self.gateway.put(tenant, file_name, data, content_type)
        except Exception:
            logger.warning("Store write failed for %s/%s, releasing reservation", tenant.prefix, file_name)
            self.ledger.release(tenant, len(data))
            raise

        self.ledger.confirm_reservation(tenant, len(data), file_name)
        return result

    def _remove_quietly(self, tenant: TenantRef, file_name: str) -> None:
        try:
            self.gateway.delete(tenant, file_name)
        except PockityError:
            logger.exception("Compensating delete failed for %s/%s", tenant.prefix, file_name)

    def delete(self, tenant: TenantRef, file_name: str) -> DeleteResult:
        """Delete a file and release its usage.

        Raises:
            NotFoundError: If the file doesn't exist
        """
        info = self.gateway.delete(tenant, file_name)
        self.ledger.decrement(tenant, info.size_bytes, file_name)
        return DeleteResult(file_name=file_name, size=info.size_bytes)

    def bulk_delete(self, tenant: TenantRef, file_names: Sequence[str]) -> BulkDeleteResult:
        """Delete files one by one; a failing item never aborts the batch."""
        result = BulkDeleteResult()
        for file_name in file_names:
            try:
                deleted = self.delete(tenant, file_name)
            except PockityError as e:
                logger.info("Bulk delete of %s for %s failed: %s", file_name, tenant.tenant_id, e.message)
                result.results.append(BulkDeleteItem(file_name=file_name, success=False, error=e.message))
                continue
            result.results.append(BulkDeleteItem(file_name=file_name, success=True, size=deleted.size))
        return result

    def get_file(self, tenant: TenantRef, file_name: str) -> FileInfo:
        key = self.gateway.key_for(tenant, file_name)
        info = self.gateway.head(key)
        return FileInfo(
            file_name=file_name,
            url=self.gateway.url_for(key),
            size=info.size_bytes,
            last_modified=info.last_modified,
            content_type=info.content_type,
        )

    def list_files(self, tenant: TenantRef) -> FileListing:
        return FileListing(files=self.gateway.list(tenant))

    def usage(self, tenant: TenantRef) -> UsageReport:
        quota = self.quota_policy.resolve_limits(tenant)
        snapshot = self.ledger.get_usage_with_quota(tenant, quota)
        return UsageReport(
            bytes_used=snapshot.usage.bytes_used,
            object_count=snapshot.usage.object_count,
            last_updated=snapshot.usage.last_updated,
            max_bytes=quota.max_bytes,
            max_objects=quota.max_objects,
            usage_percentage=snapshot.usage_percentage,
        )

    def reconcile(self, tenant: TenantRef) -> ReconcileResult:
        """Reset the ledger from the tenant's actual objects."""
        return self.ledger.reconcile(tenant, self.gateway.list(tenant))
