"""
Tests for the object store gateway.
"""
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import EndpointConnectionError

from pockity.config.loader import UrlMode
from pockity.core.errors import ForbiddenError, InternalError, NotFoundError, ValidationFailure
from pockity.core.tenant import ApiKeyTenant, UserTenant, parse_tenant
from pockity.objectstore.gateway import ObjectStoreGateway, create_s3_client

from conftest import FakeS3Client


@pytest.fixture
def gateway(fake_s3):
    return ObjectStoreGateway(fake_s3, "test-bucket")


class TestPut:
    """Test writes and key namespacing."""

    def test_put_namespaces_key_under_tenant(self, gateway, fake_s3):
        """Keys are {prefix}/{file_name}."""
        result = gateway.put(ApiKeyTenant("pk_1"), "docs/a.txt", b"hello", "text/plain")

        assert result.key == "pk_1/docs/a.txt"
        assert result.url == "https://test-bucket.s3.amazonaws.com/pk_1/docs/a.txt"
        assert ("test-bucket", "pk_1/docs/a.txt") in fake_s3.objects

    def test_put_user_tenant_prefix(self, gateway):
        """User tenants live under users/."""
        result = gateway.put(UserTenant("alice"), "a.txt", b"x")
        assert result.key == "users/alice/a.txt"

    def test_put_then_head_round_trip(self, gateway):
        """head returns the size and content type exactly as uploaded."""
        tenant = ApiKeyTenant("pk_1")
        result = gateway.put(tenant, "img.png", b"\x89PNG" * 10, "image/png")

        info = gateway.head(result.key)
        assert info.size_bytes == 40
        assert info.content_type == "image/png"
        assert info.last_modified is not None

    def test_put_default_content_type(self, gateway):
        """Missing content types fall back to octet-stream."""
        result = gateway.put(ApiKeyTenant("pk_1"), "blob", b"x")
        assert gateway.head(result.key).content_type == "application/octet-stream"

    def test_put_overwrites_silently(self, gateway):
        """A second put at the same key replaces the first."""
        tenant = ApiKeyTenant("pk_1")
        gateway.put(tenant, "a.txt", b"first")
        result = gateway.put(tenant, "a.txt", b"second!")
        assert gateway.head(result.key).size_bytes == 7

    @pytest.mark.parametrize("name", ["", "   ", "/abs.txt", "../escape.txt", "a/../../b"])
    def test_put_rejects_bad_names(self, gateway, name):
        """Names that could leave the prefix are rejected."""
        with pytest.raises(ValidationFailure):
            gateway.put(ApiKeyTenant("pk_1"), name, b"x")

    def test_put_store_failure_is_internal(self, gateway, fake_s3):
        """Unrecognized store errors become InternalError."""
        fake_s3.fail("put_object", code="SlowDown", status=503)
        with pytest.raises(InternalError):
            gateway.put(ApiKeyTenant("pk_1"), "a.txt", b"x")

    def test_connection_failure_is_internal(self):
        """botocore transport errors become InternalError."""
        client = MagicMock()
        client.put_object.side_effect = EndpointConnectionError(endpoint_url="https://s3")
        gateway = ObjectStoreGateway(client, "test-bucket")
        with pytest.raises(InternalError):
            gateway.put(ApiKeyTenant("pk_1"), "a.txt", b"x")


class TestHeadAndDelete:
    """Test metadata lookups and deletes."""

    def test_head_missing_raises_not_found(self, gateway):
        """Store 404s become NotFoundError."""
        with pytest.raises(NotFoundError):
            gateway.head("pk_1/missing.txt")

    def test_delete_returns_prior_metadata(self, gateway, fake_s3):
        """Delete removes the object and reports its size."""
        tenant = ApiKeyTenant("pk_1")
        gateway.put(tenant, "a.txt", b"12345")

        info = gateway.delete(tenant, "a.txt")

        assert info.size_bytes == 5
        assert ("test-bucket", "pk_1/a.txt") not in fake_s3.objects

    def test_delete_missing_raises_not_found(self, gateway, fake_s3):
        """Deleting an absent object fails and issues no delete call."""
        with pytest.raises(NotFoundError):
            gateway.delete(ApiKeyTenant("pk_1"), "missing.txt")
        assert "delete_object" not in fake_s3.calls

    def test_delete_is_scoped_to_tenant(self, gateway):
        """One tenant cannot delete another tenant's object by name."""
        gateway.put(ApiKeyTenant("pk_1"), "a.txt", b"x")
        with pytest.raises(NotFoundError):
            gateway.delete(ApiKeyTenant("pk_2"), "a.txt")


class TestAccess:
    """Test prefix ownership checks."""

    def test_validate_access(self, gateway):
        """Keys must sit under the tenant prefix followed by a slash."""
        tenant = ApiKeyTenant("pk_1")
        assert gateway.validate_access(tenant, "pk_1/a.txt")
        assert not gateway.validate_access(tenant, "pk_10/a.txt")
        assert not gateway.validate_access(tenant, "users/pk_1/a.txt")

    def test_ensure_access_raises_forbidden(self, gateway):
        """Foreign keys raise ForbiddenError."""
        with pytest.raises(ForbiddenError):
            gateway.ensure_access(UserTenant("alice"), "users/bob/a.txt")


class TestList:
    """Test prefix listings."""

    def test_list_only_tenant_objects(self, gateway):
        """Listings contain only the tenant's prefix."""
        gateway.put(ApiKeyTenant("pk_1"), "a.txt", b"aa", "text/plain")
        gateway.put(ApiKeyTenant("pk_1"), "b.bin", b"bbbb")
        gateway.put(ApiKeyTenant("pk_10"), "c.txt", b"c")

        objects = gateway.list(ApiKeyTenant("pk_1"))

        assert sorted(o.key for o in objects) == ["pk_1/a.txt", "pk_1/b.bin"]
        by_key = {o.key: o for o in objects}
        assert by_key["pk_1/a.txt"].size_bytes == 2
        assert by_key["pk_1/a.txt"].content_type == "text/plain"
        assert by_key["pk_1/a.txt"].url.endswith("/pk_1/a.txt")

    def test_key_tenants_never_list_user_objects(self, gateway):
        """No API key tenant can be built whose prefix covers users/."""
        gateway.put(UserTenant("alice"), "secret.txt", b"x")

        with pytest.raises(ValidationFailure):
            parse_tenant("apikey:users")
        assert gateway.list(ApiKeyTenant("users_x")) == []
        with pytest.raises(ValidationFailure):
            gateway.delete(ApiKeyTenant("pk_1"), "../users/alice/secret.txt")

    def test_list_empty_prefix(self, gateway):
        """An empty prefix yields an empty list."""
        assert gateway.list(UserTenant("nobody")) == []

    def test_list_follows_continuation_tokens(self):
        """The full listing is materialized across pages."""
        client = FakeS3Client(page_size=2)
        gateway = ObjectStoreGateway(client, "test-bucket")
        tenant = UserTenant("alice")
        for i in range(5):
            gateway.put(tenant, f"f{i}.txt", b"x" * i)

        objects = gateway.list(tenant)

        assert len(objects) == 5
        assert sum(o.size_bytes for o in objects) == 10
        assert client.calls.count("list_objects_v2") == 3


class TestUrls:
    """Test URL generation modes."""

    def test_signed_urls(self, fake_s3):
        """Signed mode presigns a GET with the configured expiry."""
        gateway = ObjectStoreGateway(fake_s3, "test-bucket", UrlMode.SIGNED, signed_url_expiry=60)
        result = gateway.put(ApiKeyTenant("pk_1"), "a.txt", b"x")
        assert result.url == "https://test-bucket.signed.test/pk_1/a.txt?expires=60"

    def test_requires_bucket(self, fake_s3):
        """A gateway needs a bucket."""
        with pytest.raises(ValueError):
            ObjectStoreGateway(fake_s3, "")


def test_create_s3_client_uses_region(monkeypatch):
    """The production factory builds a boto3 S3 client."""
    factory = MagicMock()
    monkeypatch.setattr("pockity.objectstore.gateway.boto3.client", factory)
    create_s3_client("eu-west-1")
    factory.assert_called_once_with("s3", region_name="eu-west-1")
