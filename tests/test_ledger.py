"""
Tests for the usage ledger.
"""
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from pockity.core.audit import AuditAction, AuditLog
from pockity.core.errors import ValidationFailure
from pockity.core.ledger import UsageLedger
from pockity.core.tenant import ApiKeyTenant, UserTenant
from pockity.storage.models import Quota, StoredObject
from pockity.storage.repository import AuditLogRepository, UsageRepository


class TestUsageLedger:
    """Test counter operations and their audit trail."""

    def test_get_usage_initializes_lazily(self, services):
        """First query creates a zero record."""
        usage = services.ledger.get_usage(ApiKeyTenant("pk_1"))
        assert (usage.bytes_used, usage.object_count) == (0, 0)
        assert usage.tenant_id == "apikey:pk_1"

    def test_increment_adds_bytes_and_one_object(self, services):
        """Each increment accounts for exactly one object."""
        tenant = UserTenant("alice")
        services.ledger.increment(tenant, 100, "a.txt")
        usage = services.ledger.increment(tenant, 23, "b.txt")
        assert (usage.bytes_used, usage.object_count) == (123, 2)

    def test_increment_updates_last_updated(self, services):
        """Mutations refresh the timestamp."""
        tenant = UserTenant("alice")
        before = services.ledger.get_usage(tenant).last_updated
        after = services.ledger.increment(tenant, 1, "a.txt").last_updated
        assert after >= before

    def test_increment_and_decrement_are_audited(self, services):
        """Uploads and deletes leave audit entries naming the file."""
        tenant = UserTenant("alice")
        services.ledger.increment(tenant, 10, "a.txt")
        services.ledger.decrement(tenant, 10, "a.txt")

        events = services.audit.recent(tenant_id=tenant.tenant_id)
        assert [e.action for e in events] == [
            AuditAction.STORAGE_DELETE.value,
            AuditAction.STORAGE_UPLOAD.value,
        ]
        assert events[1].detail == "Uploaded file: a.txt"
        assert events[1].metadata["file_size_bytes"] == 10

    @pytest.mark.parametrize("start_bytes,start_objects,delta", [
        (0, 0, 0),
        (0, 0, 500),
        (100, 1, 101),
        (100, 3, 10 ** 12),
        (5, 2, 5),
    ])
    def test_decrement_never_goes_negative(self, services, db_path, start_bytes, start_objects, delta):
        """bytes_used becomes max(0, usage - delta), objects max(0, count - 1)."""
        tenant = UserTenant("alice")
        UsageRepository(db_path).set_usage(tenant.tenant_id, start_bytes, start_objects)

        usage = services.ledger.decrement(tenant, delta, "x")

        assert usage.bytes_used == max(0, start_bytes - delta)
        assert usage.object_count == max(0, start_objects - 1)

    def test_negative_delta_is_rejected(self, services):
        """Deltas are sizes and cannot be negative."""
        with pytest.raises(ValidationFailure):
            services.ledger.increment(UserTenant("alice"), -5, "a.txt")
        with pytest.raises(ValidationFailure):
            services.ledger.decrement(UserTenant("alice"), -5, "a.txt")

    def test_audit_failure_is_swallowed(self, db_path, services):
        """A broken audit sink never fails the counter update."""
        broken = MagicMock(spec=AuditLogRepository)
        broken.insert.side_effect = RuntimeError("audit store down")
        ledger = UsageLedger(UsageRepository(db_path), AuditLog(broken))

        usage = ledger.increment(UserTenant("alice"), 7, "a.txt")

        assert usage.bytes_used == 7
        broken.insert.assert_called_once()


class TestUsageWithQuota:
    """Test percentage reporting."""

    def test_percentages(self, services, db_path):
        """Percentages are relative to the quota."""
        tenant = UserTenant("alice")
        UsageRepository(db_path).set_usage(tenant.tenant_id, 250, 5)

        report = services.ledger.get_usage_with_quota(tenant, Quota(1000, 10))

        assert report.usage_percentage == {"bytes": 25.0, "objects": 50.0}
        assert report.quota == Quota(1000, 10)
        assert report.usage.bytes_used == 250

    def test_percentages_clamped_to_100(self, services, db_path):
        """Usage above the quota reports 100%."""
        tenant = UserTenant("alice")
        UsageRepository(db_path).set_usage(tenant.tenant_id, 5000, 50)

        report = services.ledger.get_usage_with_quota(tenant, Quota(1000, 10))

        assert report.usage_percentage == {"bytes": 100.0, "objects": 100.0}


class TestReservations:
    """Test the conditional increment used by strict enforcement."""

    def test_reserve_and_release(self, services):
        """A released reservation restores the counters."""
        tenant = UserTenant("alice")
        assert services.ledger.reserve(tenant, 40, Quota(100, 10)) is True
        assert services.ledger.reserve(tenant, 70, Quota(100, 10)) is False

        usage = services.ledger.release(tenant, 40)
        assert (usage.bytes_used, usage.object_count) == (0, 0)


class TestReconcile:
    """Test resetting the ledger from a listing."""

    def _objects(self, *sizes):
        return [
            StoredObject(key=f"users/alice/{i}", size_bytes=size, last_modified=datetime(2024, 1, 1))
            for i, size in enumerate(sizes)
        ]

    def test_reconcile_corrects_drift(self, services, db_path):
        """Counters are replaced by the listing totals and the drift is reported."""
        tenant = UserTenant("alice")
        UsageRepository(db_path).set_usage(tenant.tenant_id, 999, 9)

        result = services.ledger.reconcile(tenant, self._objects(10, 20))

        assert (result.current.bytes_used, result.current.object_count) == (30, 2)
        assert result.bytes_drift == 969
        assert result.objects_drift == 7
        assert not result.in_sync
        assert services.audit.recent(limit=1)[0].action == AuditAction.LEDGER_RECONCILE.value

    def test_reconcile_in_sync(self, services):
        """A consistent ledger reports no drift."""
        tenant = UserTenant("alice")
        services.ledger.increment(tenant, 10, "0")

        result = services.ledger.reconcile(tenant, self._objects(10))

        assert result.in_sync


class TestOverview:
    """Test the all-tenants usage listing."""

    def test_overview_lists_touched_tenants(self, services):
        """Only tenants with a usage record appear, ordered by id."""
        services.ledger.increment(UserTenant("bob"), 5, "b")
        services.ledger.increment(ApiKeyTenant("pk_1"), 7, "a")

        records = services.ledger.overview()

        assert [(r.tenant_id, r.bytes_used) for r in records] == [
            ("apikey:pk_1", 7),
            ("user:bob", 5),
        ]
