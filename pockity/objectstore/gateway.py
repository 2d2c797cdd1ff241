"""
Object store gateway.

Wraps an S3-compatible bucket shared by all tenants. Every key is
namespaced under the tenant's prefix, ``{prefix}/{file_name}``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..config.loader import UrlMode
from ..core.errors import ForbiddenError, InternalError, NotFoundError, ValidationFailure
from ..core.tenant import TenantRef
from ..storage.models import StoredObject

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass(frozen=True)
class PutResult:
    key: str
    url: str


@dataclass(frozen=True)
class ObjectInfo:
    size_bytes: int
    last_modified: datetime
    content_type: Optional[str] = None


def create_s3_client(region: Optional[str] = None):
    """Build the production S3 client from the ambient AWS credentials."""
    return boto3.client("s3", region_name=region)


def validate_file_name(file_name: str) -> None:
    if not file_name or not file_name.strip():
        raise ValidationFailure("File name is required")
    if file_name.startswith("/"):
        raise ValidationFailure("File name must not start with '/'")
    if ".." in file_name.split("/"):
        raise ValidationFailure("File name must not contain '..' segments")


def _is_not_found(error: ClientError) -> bool:
    err = error.response.get("Error", {})
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return str(err.get("Code")) in _NOT_FOUND_CODES or status == 404


class ObjectStoreGateway:
    """Tenant-namespaced access to a single bucket.

    The S3 client is injected so tests can pass a double.
    """

    def __init__(
        self,
        client: Any,
        bucket: str,
        url_mode: UrlMode = UrlMode.PERMANENT,
        signed_url_expiry: int = 3600
    ):
        if not bucket:
            raise ValueError("bucket is required")
        self.client = client
        self.bucket = bucket
        self.url_mode = url_mode
        self.signed_url_expiry = signed_url_expiry

    def key_for(self, tenant: TenantRef, file_name: str) -> str:
        validate_file_name(file_name)
        return f"{tenant.prefix}/{file_name}"

    def validate_access(self, tenant: TenantRef, key: str) -> bool:
        """Whether ``key`` lies under the tenant's prefix."""
        return key.startswith(f"{tenant.prefix}/")

    def ensure_access(self, tenant: TenantRef, key: str) -> None:
        if not self.validate_access(tenant, key):
            raise ForbiddenError(f"Key '{key}' does not belong to tenant {tenant.tenant_id}")

    def put(
        self,
        tenant: TenantRef,
        file_name: str,
        data: bytes,
        content_type: Optional[str] = None
    ) -> PutResult:
        """Write an object, silently replacing any existing one at the same key."""
        key = self.key_for(tenant, file_name)
        self._call(
            "put_object",
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type or DEFAULT_CONTENT_TYPE,
        )
        logger.debug("Stored %s (%d bytes)", key, len(data))
        return PutResult(key=key, url=self.url_for(key))

    def delete(self, tenant: TenantRef, file_name: str) -> ObjectInfo:
        """Remove an object and return its metadata as it was before deletion."""
        key = self.key_for(tenant, file_name)
        self.ensure_access(tenant, key)
        # S3 deletes are idempotent, so absence has to be detected up front
        info = self.head(key)
        self._call("delete_object", Bucket=self.bucket, Key=key)
        logger.debug("Deleted %s", key)
        return info

    def head(self, key: str) -> ObjectInfo:
        response = self._call("head_object", Bucket=self.bucket, Key=key)
        return ObjectInfo(
            size_bytes=response.get("ContentLength", 0),
            last_modified=response.get("LastModified") or datetime.now(),
            content_type=response.get("ContentType"),
        )

    def list(self, tenant: TenantRef) -> List[StoredObject]:
        """Every object under the tenant prefix, fully materialized."""
        params: Dict[str, Any] = {"Bucket": self.bucket, "Prefix": f"{tenant.prefix}/"}
        objects = []
        while True:
            response = self._call("list_objects_v2", **params)
            for item in response.get("Contents", []):
                key = item.get("Key")
                if not key or item.get("Size") is None or not item.get("LastModified"):
                    continue
                objects.append(StoredObject(
                    key=key,
                    size_bytes=item["Size"],
                    last_modified=item["LastModified"],
                    content_type=self.head(key).content_type,
                    url=self.url_for(key),
                ))
            if not response.get("IsTruncated"):
                break
            params["ContinuationToken"] = response["NextContinuationToken"]
        return objects

    def url_for(self, key: str) -> str:
        if self.url_mode == UrlMode.SIGNED:
            return self._call(
                "generate_presigned_url",
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.signed_url_expiry,
            )
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def _call(self, method: str, *args, **kwargs):
        try:
            return getattr(self.client, method)(*args, **kwargs)
        except ClientError as e:
            if _is_not_found(e):
                raise NotFoundError("File not found", details={"key": kwargs.get("Key")}) from e
            raise InternalError(f"Object store {method} failed", details=str(e)) from e
        except BotoCoreError as e:
            raise InternalError(f"Object store {method} failed", details=str(e)) from e
