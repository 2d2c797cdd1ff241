"""
Shared fixtures: an in-memory S3 double and fully wired services.
"""

import os
from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError

from pockity.config.loader import default_config
from pockity.core.services import build_services


def _client_error(code: str, status: int, operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeS3Client:
    """Implements the subset of the boto3 S3 client the gateway uses."""

    def __init__(self, page_size: int = 1000):
        self.objects = {}
        self.page_size = page_size
        self.failures = {}
        self.calls = []

    def fail(self, method: str, code: str = "InternalError", status: int = 500) -> None:
        """Make the next call to ``method`` raise a ClientError."""
        self.failures[method] = (code, status)

    def _maybe_fail(self, method: str, operation: str) -> None:
        self.calls.append(method)
        if method in self.failures:
            code, status = self.failures.pop(method)
            raise _client_error(code, status, operation)

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self._maybe_fail("put_object", "PutObject")
        self.objects[(Bucket, Key)] = {
            "Body": bytes(Body),
            "ContentType": ContentType,
            "LastModified": datetime.now(timezone.utc),
        }
        return {"ETag": '"fake"'}

    def head_object(self, Bucket, Key):
        self._maybe_fail("head_object", "HeadObject")
        obj = self.objects.get((Bucket, Key))
        if obj is None:
            raise _client_error("404", 404, "HeadObject")
        return {
            "ContentLength": len(obj["Body"]),
            "ContentType": obj["ContentType"],
            "LastModified": obj["LastModified"],
        }

    def delete_object(self, Bucket, Key):
        self._maybe_fail("delete_object", "DeleteObject")
        self.objects.pop((Bucket, Key), None)
        return {}

    def list_objects_v2(self, Bucket, Prefix="", ContinuationToken=None):
        self._maybe_fail("list_objects_v2", "ListObjectsV2")
        keys = sorted(k for (b, k) in self.objects if b == Bucket and k.startswith(Prefix))
        start = int(ContinuationToken or 0)
        page = keys[start:start + self.page_size]
        response = {
            "KeyCount": len(page),
            "IsTruncated": start + self.page_size < len(keys),
        }
        if page:
            response["Contents"] = [
                {
                    "Key": key,
                    "Size": len(self.objects[(Bucket, key)]["Body"]),
                    "LastModified": self.objects[(Bucket, key)]["LastModified"],
                }
                for key in page
            ]
        if response["IsTruncated"]:
            response["NextContinuationToken"] = str(start + self.page_size)
        return response

    def generate_presigned_url(self, ClientMethod, Params=None, ExpiresIn=3600):
        self._maybe_fail("generate_presigned_url", "GeneratePresignedUrl")
        return f"https://{Params['Bucket']}.signed.test/{Params['Key']}?expires={ExpiresIn}"


@pytest.fixture
def fake_s3():
    return FakeS3Client()


@pytest.fixture
def db_path(tmp_path):
    return os.path.join(str(tmp_path), "pockity-test.db")


@pytest.fixture
def config(db_path):
    return default_config("test-bucket", db_path)


@pytest.fixture
def services(config, fake_s3):
    return build_services(config, s3_client=fake_s3)
