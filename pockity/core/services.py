"""
Service wiring.

Builds the repositories and services for one configuration. The S3 client
is created here, once, and handed to the gateway.
"""

from dataclasses import dataclass
from typing import Any, Optional

from ..config.loader import PockityConfig
from ..objectstore.gateway import ObjectStoreGateway, create_s3_client
from ..storage.models import Quota
from ..storage.repository import (
    ApiKeyRepository,
    ApprovalRepository,
    AuditLogRepository,
    LimitsRepository,
    UsageRepository,
    initialize_schema,
)
from .approvals import ApprovalWorkflow
from .audit import AuditLog
from .ledger import UsageLedger
from .quota import QuotaPolicy
from .storage_service import StorageService


@dataclass(frozen=True)
class Services:
    audit: AuditLog
    ledger: UsageLedger
    quota: QuotaPolicy
    storage: StorageService
    approvals: ApprovalWorkflow


def build_services(
    config: PockityConfig,
    s3_client: Optional[Any] = None,
    initialize: bool = True
) -> Services:
    """Assemble every service for ``config``.

    Args:
        config: Validated configuration
        s3_client: Client to use instead of a fresh boto3 client
        initialize: Create the database schema if missing
    """
    db_path = config.database.path
    if initialize:
        initialize_schema(db_path)

    audit = AuditLog(AuditLogRepository(db_path))
    limits = LimitsRepository(db_path)
    ledger = UsageLedger(UsageRepository(db_path), audit)
    quota = QuotaPolicy(
        limits,
        ledger,
        audit,
        Quota(
            max_bytes=config.quota.default_max_bytes,
            max_objects=config.quota.default_max_objects,
        ),
    )
    gateway = ObjectStoreGateway(
        s3_client if s3_client is not None else create_s3_client(config.storage.region),
        config.storage.bucket,
        url_mode=config.storage.url_mode,
        signed_url_expiry=config.storage.signed_url_expiry,
    )
    storage = StorageService(
        gateway,
        ledger,
        quota,
        enforcement=config.quota.enforcement,
        compensate_failed_writes=config.consistency.compensate_failed_writes,
        max_file_size=config.quota.max_file_size,
    )
    approvals = ApprovalWorkflow(
        ApprovalRepository(db_path),
        ApiKeyRepository(db_path),
        limits,
        audit,
    )
    return Services(audit=audit, ledger=ledger, quota=quota, storage=storage, approvals=approvals)
