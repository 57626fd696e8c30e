"""
Object storage for signed invoice documents.

The engine depends only on the ObjectStore protocol. S3ObjectStore is the
production implementation over boto3; credentials come from the default AWS
credential chain (environment, profile or instance role).
"""

import logging
from typing import Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class ObjectStoreError(Exception):
    """Raised when a document cannot be stored."""


class ObjectStore(Protocol):
    def put(self, key: str, content: bytes, content_type: str, metadata: dict[str, str]) -> str:
        """Store bytes under key and return the document URL."""
        ...


class S3ObjectStore:
    """Write documents to one S3 bucket."""

    def __init__(self, bucket: str, region: str = "us-east-1", client=None):
        if not bucket:
            raise ValueError("bucket is required")

        self.bucket = bucket
        self.region = region
        self.client = client or boto3.client("s3", region_name=region)

    def url_for(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def put(self, key: str, content: bytes, content_type: str, metadata: dict[str, str]) -> str:
        """
        Upload content and return its public URL.

        Raises:
            ObjectStoreError: If S3 rejects the upload
        """
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
                Metadata=metadata,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise ObjectStoreError(f"Upload failed: {e}")

        logger.info(f"Stored {len(content)} bytes at s3://{self.bucket}/{key}")
        return self.url_for(key)
