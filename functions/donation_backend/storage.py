"""
Image storage for Firebase Storage, Tencent COS (S3-compatible) and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from firebase_admin import storage as firebase_storage
from google.api_core import exceptions as google_exceptions

from donation_backend.errors import Upstream

# Signed Firebase Storage URLs stay readable until this date.
FIREBASE_URL_EXPIRATION = datetime(2030, 1, 1, tzinfo=timezone.utc)


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> str:
        """Stores the bytes and returns a URL the app can read them from."""
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = field(default_factory=dict)

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> str:
        self.stored_objects[path] = (data, content_type)
        return f"{self.base_url}/{path}"


class FirebaseStorageClient:
    """Default Firebase Storage bucket of the app."""

    def __init__(self, bucket_name: str | None = None, app=None):
        self._bucket = firebase_storage.bucket(bucket_name, app=app)

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> str:
        blob = self._bucket.blob(path)
        try:
            blob.upload_from_string(data, content_type=content_type)
            return blob.generate_signed_url(
                expiration=FIREBASE_URL_EXPIRATION, method="GET"
            )
        except google_exceptions.GoogleAPICallError as e:
            raise Upstream(f"Image upload failed: {e}") from e


@dataclass
class CosStorageClient:
    """
    S3-compatible storage client for Tencent COS.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    url_expires_in: int = 7 * 24 * 3600

    def __post_init__(self):
        # Use virtual-hosted style addressing to satisfy COS requirements.
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> str:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
            return self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": path},
                ExpiresIn=self.url_expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise Upstream(f"Image upload failed: {e}") from e
