"""
Object store access for Pockity.

Provides tenant-namespaced operations against an S3 bucket.
"""

from .gateway import ObjectInfo, ObjectStoreGateway, PutResult, create_s3_client

__all__ = ["ObjectInfo", "ObjectStoreGateway", "PutResult", "create_s3_client"]
