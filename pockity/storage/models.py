"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class UsageRecord:
    """Running counters approximating a tenant's true storage usage.

    One record per tenant, created lazily with zero values and never deleted.
    """
    tenant_id: str
    bytes_used: int
    object_count: int
    last_updated: datetime


@dataclass(frozen=True)
class Quota:
    """Maximum bytes/objects a tenant may store."""
    max_bytes: int
    max_objects: int

    def __post_init__(self):
        if self.max_bytes <= 0:
            raise ValueError("max_bytes must be > 0")
        if self.max_objects <= 0:
            raise ValueError("max_objects must be > 0")


@dataclass(frozen=True)
class StoredObject:
    """An object present under a tenant prefix."""
    key: str
    size_bytes: int
    last_modified: datetime
    content_type: Optional[str] = None
    url: Optional[str] = None


class ApprovalStatus(Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class RequestType(Enum):
    CREATE = "CREATE"
    UPGRADE = "UPGRADE"


@dataclass(frozen=True)
class ApprovalRequest:
    """A tenant's request for a new API key or higher limits.

    Created PENDING; resolved exactly once by an admin decision.
    """
    id: str
    request_type: RequestType
    user_id: str
    requested_bytes: int
    requested_objects: int
    status: ApprovalStatus
    created_at: datetime
    access_key_id: Optional[str] = None
    key_name: Optional[str] = None
    reason: Optional[str] = None
    current_bytes: Optional[int] = None
    current_objects: Optional[int] = None
    reviewer_id: Optional[str] = None
    reviewer_comment: Optional[str] = None
    reviewed_at: Optional[datetime] = None

    @property
    def is_resolved(self) -> bool:
        return self.status != ApprovalStatus.PENDING


@dataclass(frozen=True)
class ApiKey:
    """An issued credential pair; only the secret's hash is kept."""
    access_key_id: str
    secret_hash: str
    user_id: str
    created_at: datetime
    name: Optional[str] = None
    is_active: bool = True
    revoked_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None

    @property
    def is_usable(self) -> bool:
        return self.is_active and self.revoked_at is None


@dataclass(frozen=True)
class AuditEvent:
    """Append-only record of a notable action."""
    action: str
    tenant_id: Optional[str] = None
    actor_id: Optional[str] = None
    detail: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
