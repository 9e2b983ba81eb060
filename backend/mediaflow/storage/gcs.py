"""
Google Cloud Storage client through the S3-compatible XML API.
Uses boto3 with HMAC keys for object reads and writes.

Assets move through the workflow as either ``gs://bucket/key`` URIs or
``data:<mime>;base64,...`` URLs; helpers here read and write both.
"""
import base64
import binascii
import re
from typing import Optional, Tuple

import boto3
from botocore.client import BaseClient

from mediaflow.config import get_settings

_DATA_URL_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)


class GCSClient:
    """Singleton GCS (S3 interop) client wrapper."""

    _instance: Optional['GCSClient'] = None
    _client: Optional[BaseClient] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._client is None:
            settings = get_settings()

            if not settings.gcs_hmac_access_key_id:
                raise ValueError("GCS_HMAC_ACCESS_KEY_ID environment variable is required")
            if not settings.gcs_hmac_secret:
                raise ValueError("GCS_HMAC_SECRET environment variable is required")

            try:
                self._client = boto3.client(
                    "s3",
                    endpoint_url=settings.gcs_endpoint,
                    aws_access_key_id=settings.gcs_hmac_access_key_id,
                    aws_secret_access_key=settings.gcs_hmac_secret,
                    region_name="auto"
                )
            except Exception as e:
                raise ValueError(f"Failed to create GCS client: {str(e)}")

    @property
    def client(self) -> BaseClient:
        """Get the underlying boto3 client."""
        if self._client is None:
            raise RuntimeError("GCS client not initialized. Check environment variables.")
        return self._client


def get_gcs() -> GCSClient:
    """Get the GCS client singleton."""
    return GCSClient()


def parse_gs_uri(uri: str) -> Tuple[str, str]:
    """Split ``gs://bucket/path/to/key`` into (bucket, key)."""
    if not uri.startswith("gs://"):
        raise ValueError(f"Not a gs:// URI: {uri[:50]}")
    bucket, _, key = uri[len("gs://"):].partition("/")
    if not bucket:
        raise ValueError(f"gs:// URI has no bucket: {uri[:50]}")
    return bucket, key


def parse_data_url(url: str) -> Optional[Tuple[str, bytes]]:
    """Decode a base64 data URL into (mime_type, bytes); None if it is not one."""
    match = _DATA_URL_RE.match(url)
    if not match:
        return None
    try:
        return match.group(1), base64.b64decode(match.group(2))
    except (binascii.Error, ValueError):
        return None


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}"


def download_bytes(uri: str) -> bytes:
    """Read an asset given as a data URL or a gs:// URI."""
    decoded = parse_data_url(uri)
    if decoded is not None:
        return decoded[1]

    bucket, key = parse_gs_uri(uri)
    response = get_gcs().client.get_object(Bucket=bucket, Key=key)
    return response["Body"].read()


def upload_bytes(data: bytes, filename: str, content_type: str) -> str:
    """Store bytes under GCS_STORAGE_URI and return the object's gs:// URI."""
    storage_uri = get_settings().gcs_storage_uri
    if not storage_uri:
        raise ValueError("GCS_STORAGE_URI environment variable is required")

    bucket, prefix = parse_gs_uri(storage_uri.rstrip("/"))
    key = f"{prefix}/{filename}" if prefix else filename

    get_gcs().client.put_object(
        Bucket=bucket,
        Key=key,
        Body=data,
        ContentType=content_type,
    )
    return f"gs://{bucket}/{key}"
