"""
Repository pattern for data access.

Handles database operations and data persistence logic. Each counter
mutation is a single SQL statement so that SQLite applies it atomically.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from ..core.errors import DatabaseError
from .db import get_connection
from .models import (
    ApiKey,
    ApprovalRequest,
    ApprovalStatus,
    AuditEvent,
    Quota,
    RequestType,
    UsageRecord,
)


@contextmanager
def _connect(db_path: str) -> Iterator[sqlite3.Connection]:
    """Open a connection, commit on success and translate SQLite failures."""
    try:
        conn = get_connection(db_path)
    except sqlite3.Error as e:
        raise DatabaseError("Failed to open database", details=str(e)) from e
    try:
        yield conn
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        raise DatabaseError("Database operation failed", details=str(e)) from e
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def initialize_schema(db_path: str = "pockity.db") -> None:
    """Create all Pockity tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    with _connect(db_path) as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS usage_current (
                tenant_id TEXT PRIMARY KEY,
                bytes_used INTEGER NOT NULL DEFAULT 0,
                object_count INTEGER NOT NULL DEFAULT 0,
                last_updated TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS tenant_limits (
                tenant_id TEXT PRIMARY KEY,
                max_bytes INTEGER NOT NULL,
                max_objects INTEGER NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS api_keys (
                access_key_id TEXT PRIMARY KEY,
                secret_hash TEXT NOT NULL,
                user_id TEXT NOT NULL,
                name TEXT,
                created_at TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                revoked_at TEXT,
                last_used_at TEXT
            );

            CREATE TABLE IF NOT EXISTS approval_requests (
                id TEXT PRIMARY KEY,
                request_type TEXT NOT NULL,
                user_id TEXT NOT NULL,
                access_key_id TEXT,
                key_name TEXT,
                requested_bytes INTEGER NOT NULL,
                requested_objects INTEGER NOT NULL,
                current_bytes INTEGER,
                current_objects INTEGER,
                reason TEXT,
                status TEXT NOT NULL DEFAULT 'PENDING',
                reviewer_id TEXT,
                reviewer_comment TEXT,
                reviewed_at TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_approval_requests_user
                ON approval_requests (user_id, status);

            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                action TEXT NOT NULL,
                tenant_id TEXT,
                actor_id TEXT,
                detail TEXT,
                metadata TEXT,
                created_at TEXT NOT NULL
            );
        """)


class UsageRepository:
    """Per-tenant usage counters."""

    def __init__(self, db_path: str = "pockity.db"):
        self.db_path = db_path

    def get_or_create(self, tenant_id: str) -> UsageRecord:
        """Return the tenant's record, inserting a zero record if none exists."""
        with _connect(self.db_path) as conn:
            self._ensure_row(conn, tenant_id)
            return self._select(conn, tenant_id)

    def upsert_increment(
        self,
        tenant_id: str,
        delta_bytes: int,
        delta_objects: int = 1,
        now: Optional[datetime] = None
    ) -> UsageRecord:
        """Add to the counters, creating the record on first use."""
        now = now or datetime.now()
        with _connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO usage_current (tenant_id, bytes_used, object_count, last_updated)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (tenant_id) DO UPDATE SET
                    bytes_used = bytes_used + excluded.bytes_used,
                    object_count = object_count + excluded.object_count,
                    last_updated = excluded.last_updated
            """, (tenant_id, delta_bytes, delta_objects, now.isoformat()))
            return self._select(conn, tenant_id)

    def decrement_clamped(
        self,
        tenant_id: str,
        delta_bytes: int,
        delta_objects: int = 1,
        now: Optional[datetime] = None
    ) -> UsageRecord:
        """Subtract from the counters without going below zero."""
        now = now or datetime.now()
        with _connect(self.db_path) as conn:
            self._ensure_row(conn, tenant_id, now)
            conn.execute("""
                UPDATE usage_current SET
                    bytes_used = MAX(0, bytes_used - ?),
                    object_count = MAX(0, object_count - ?),
                    last_updated = ?
                WHERE tenant_id = ?
            """, (delta_bytes, delta_objects, now.isoformat(), tenant_id))
            return self._select(conn, tenant_id)

    def reserve(
        self,
        tenant_id: str,
        delta_bytes: int,
        max_bytes: int,
        max_objects: int,
        now: Optional[datetime] = None
    ) -> bool:
        """Increment only if the result stays within the given limits.

        Returns:
            True if the increment was applied, False if it would exceed a limit
        """
        now = now or datetime.now()
        with _connect(self.db_path) as conn:
            self._ensure_row(conn, tenant_id, now)
            cursor = conn.execute("""
                UPDATE usage_current SET
                    bytes_used = bytes_used + ?,
                    object_count = object_count + 1,
                    last_updated = ?
                WHERE tenant_id = ?
                  AND bytes_used + ? <= ?
                  AND object_count + 1 <= ?
            """, (delta_bytes, now.isoformat(), tenant_id, delta_bytes, max_bytes, max_objects))
            return cursor.rowcount == 1

    def set_usage(
        self,
        tenant_id: str,
        bytes_used: int,
        object_count: int,
        now: Optional[datetime] = None
    ) -> UsageRecord:
        """Overwrite the counters with known-good values."""
        now = now or datetime.now()
        with _connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO usage_current (tenant_id, bytes_used, object_count, last_updated)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (tenant_id) DO UPDATE SET
                    bytes_used = excluded.bytes_used,
                    object_count = excluded.object_count,
                    last_updated = excluded.last_updated
            """, (tenant_id, bytes_used, object_count, now.isoformat()))
            return self._select(conn, tenant_id)

    def list_all(self) -> List[UsageRecord]:
        with _connect(self.db_path) as conn:
            cursor = conn.execute("""
                SELECT tenant_id, bytes_used, object_count, last_updated
                FROM usage_current ORDER BY tenant_id
            """)
            return [self._row_to_record(row) for row in cursor.fetchall()]

    @staticmethod
    def _ensure_row(conn: sqlite3.Connection, tenant_id: str, now: Optional[datetime] = None) -> None:
        conn.execute("""
            INSERT OR IGNORE INTO usage_current (tenant_id, bytes_used, object_count, last_updated)
            VALUES (?, 0, 0, ?)
        """, (tenant_id, (now or datetime.now()).isoformat()))

    def _select(self, conn: sqlite3.Connection, tenant_id: str) -> Optional[UsageRecord]:
        cursor = conn.execute("""
            SELECT tenant_id, bytes_used, object_count, last_updated
            FROM usage_current WHERE tenant_id = ?
        """, (tenant_id,))
        row = cursor.fetchone()
        return self._row_to_record(row) if row else None

    @staticmethod
    def _row_to_record(row) -> UsageRecord:
        return UsageRecord(
            tenant_id=row[0],
            bytes_used=row[1],
            object_count=row[2],
            last_updated=datetime.fromisoformat(row[3])
        )


class LimitsRepository:
    """Explicit per-tenant quota limits."""

    def __init__(self, db_path: str = "pockity.db"):
        self.db_path = db_path

    def get(self, tenant_id: str) -> Optional[Quota]:
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT max_bytes, max_objects FROM tenant_limits WHERE tenant_id = ?",
                (tenant_id,)
            ).fetchone()
        if not row:
            return None
        return Quota(max_bytes=row[0], max_objects=row[1])

    def set(self, tenant_id: str, quota: Quota) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO tenant_limits (tenant_id, max_bytes, max_objects, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (tenant_id) DO UPDATE SET
                    max_bytes = excluded.max_bytes,
                    max_objects = excluded.max_objects,
                    updated_at = excluded.updated_at
            """, (tenant_id, quota.max_bytes, quota.max_objects, datetime.now().isoformat()))


_KEY_COLUMNS = """
    access_key_id, secret_hash, user_id, name, created_at,
    is_active, revoked_at, last_used_at
"""


class ApiKeyRepository:
    """Issued API keys."""

    def __init__(self, db_path: str = "pockity.db"):
        self.db_path = db_path

    def create(self, api_key: ApiKey) -> ApiKey:
        with _connect(self.db_path) as conn:
            conn.execute(f"""
                INSERT INTO api_keys ({_KEY_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                api_key.access_key_id,
                api_key.secret_hash,
                api_key.user_id,
                api_key.name,
                api_key.created_at.isoformat(),
                1 if api_key.is_active else 0,
                api_key.revoked_at.isoformat() if api_key.revoked_at else None,
                api_key.last_used_at.isoformat() if api_key.last_used_at else None
            ))
        return api_key

    def find(self, access_key_id: str) -> Optional[ApiKey]:
        with _connect(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_KEY_COLUMNS} FROM api_keys WHERE access_key_id = ?",
                (access_key_id,)
            ).fetchone()
        return self._row_to_key(row) if row else None

    def list_for_user(self, user_id: str) -> List[ApiKey]:
        with _connect(self.db_path) as conn:
            cursor = conn.execute(f"""
                SELECT {_KEY_COLUMNS} FROM api_keys
                WHERE user_id = ? ORDER BY created_at DESC, rowid DESC
            """, (user_id,))
            return [self._row_to_key(row) for row in cursor.fetchall()]

    def revoke(self, access_key_id: str, revoked_at: datetime) -> bool:
        """Deactivate a key permanently.

        Returns:
            True if this call revoked the key, False if it was already inactive
        """
        with _connect(self.db_path) as conn:
            cursor = conn.execute("""
                UPDATE api_keys SET is_active = 0, revoked_at = ?
                WHERE access_key_id = ? AND is_active = 1
            """, (revoked_at.isoformat(), access_key_id))
            return cursor.rowcount == 1

    def touch(self, access_key_id: str, used_at: datetime) -> None:
        with _connect(self.db_path) as conn:
            conn.execute(
                "UPDATE api_keys SET last_used_at = ? WHERE access_key_id = ?",
                (used_at.isoformat(), access_key_id)
            )

    @staticmethod
    def _row_to_key(row) -> ApiKey:
        return ApiKey(
            access_key_id=row[0],
            secret_hash=row[1],
            user_id=row[2],
            name=row[3],
            created_at=datetime.fromisoformat(row[4]),
            is_active=bool(row[5]),
            revoked_at=_parse_ts(row[6]),
            last_used_at=_parse_ts(row[7])
        )


_REQUEST_COLUMNS = """
    id, request_type, user_id, access_key_id, key_name, requested_bytes,
    requested_objects, current_bytes, current_objects, reason, status,
    reviewer_id, reviewer_comment, reviewed_at, created_at
"""


class ApprovalRepository:
    """API key creation and upgrade requests."""

    def __init__(self, db_path: str = "pockity.db"):
        self.db_path = db_path

    def create(self, request: ApprovalRequest) -> ApprovalRequest:
        with _connect(self.db_path) as conn:
            conn.execute(f"""
                INSERT INTO approval_requests ({_REQUEST_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                request.id,
                request.request_type.value,
                request.user_id,
                request.access_key_id,
                request.key_name,
                request.requested_bytes,
                request.requested_objects,
                request.current_bytes,
                request.current_objects,
                request.reason,
                request.status.value,
                request.reviewer_id,
                request.reviewer_comment,
                request.reviewed_at.isoformat() if request.reviewed_at else None,
                request.created_at.isoformat()
            ))
        return request

    def find(self, request_id: str) -> Optional[ApprovalRequest]:
        with _connect(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_REQUEST_COLUMNS} FROM approval_requests WHERE id = ?",
                (request_id,)
            ).fetchone()
        return self._row_to_request(row) if row else None

    def find_pending(
        self,
        request_type: RequestType,
        user_id: Optional[str] = None,
        access_key_id: Optional[str] = None
    ) -> List[ApprovalRequest]:
        """Pending requests of one type for a user or an API key."""
        query = f"SELECT {_REQUEST_COLUMNS} FROM approval_requests WHERE status = ? AND request_type = ?"
        params = [ApprovalStatus.PENDING.value, request_type.value]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        if access_key_id is not None:
            query += " AND access_key_id = ?"
            params.append(access_key_id)
        with _connect(self.db_path) as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_request(row) for row in cursor.fetchall()]

    def list(
        self,
        status: Optional[ApprovalStatus] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[ApprovalRequest]:
        """List requests newest first with optional filtering."""
        query = f"SELECT {_REQUEST_COLUMNS} FROM approval_requests"
        params = []
        conditions = []

        if status:
            conditions.append("status = ?")
            params.append(status.value)
        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with _connect(self.db_path) as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_request(row) for row in cursor.fetchall()]

    def resolve(
        self,
        request_id: str,
        status: ApprovalStatus,
        reviewer_id: str,
        reviewer_comment: Optional[str],
        reviewed_at: datetime
    ) -> bool:
        """Move a PENDING request to a terminal status.

        Returns:
            True if this call resolved the request, False if it was no longer pending
        """
        with _connect(self.db_path) as conn:
            cursor = conn.execute("""
                UPDATE approval_requests SET
                    status = ?, reviewer_id = ?, reviewer_comment = ?, reviewed_at = ?
                WHERE id = ? AND status = ?
            """, (
                status.value,
                reviewer_id,
                reviewer_comment,
                reviewed_at.isoformat(),
                request_id,
                ApprovalStatus.PENDING.value
            ))
            return cursor.rowcount == 1

    @staticmethod
    def _row_to_request(row) -> ApprovalRequest:
        return ApprovalRequest(
            id=row[0],
            request_type=RequestType(row[1]),
            user_id=row[2],
            access_key_id=row[3],
            key_name=row[4],
            requested_bytes=row[5],
            requested_objects=row[6],
            current_bytes=row[7],
            current_objects=row[8],
            reason=row[9],
            status=ApprovalStatus(row[10]),
            reviewer_id=row[11],
            reviewer_comment=row[12],
            reviewed_at=_parse_ts(row[13]),
            created_at=datetime.fromisoformat(row[14])
        )


class AuditLogRepository:
    """Append-only audit trail. No UPDATE or DELETE is ever issued."""

    def __init__(self, db_path: str = "pockity.db"):
        self.db_path = db_path

    def insert(self, event: AuditEvent) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO audit_log (action, tenant_id, actor_id, detail, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                event.action,
                event.tenant_id,
                event.actor_id,
                event.detail,
                json.dumps(event.metadata, default=str),
                event.created_at.isoformat()
            ))

    def recent(self, limit: int = 100, tenant_id: Optional[str] = None) -> List[AuditEvent]:
        query = "SELECT action, tenant_id, actor_id, detail, metadata, created_at FROM audit_log"
        params = []
        if tenant_id:
            query += " WHERE tenant_id = ?"
            params.append(tenant_id)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with _connect(self.db_path) as conn:
            cursor = conn.execute(query, params)
            return [
                AuditEvent(
                    action=row[0],
                    tenant_id=row[1],
                    actor_id=row[2],
                    detail=row[3],
                    metadata=json.loads(row[4]) if row[4] else {},
                    created_at=datetime.fromisoformat(row[5])
                )
                for row in cursor.fetchall()
            ]
