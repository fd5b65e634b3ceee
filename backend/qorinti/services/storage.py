import asyncio
import functools

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from qorinti.config import settings

logger = structlog.get_logger()

MOCK_STORAGE_URL = "https://storage.qorinti.dev"
MAX_FILE_BYTES_SIZE = 10 * 1024 * 1024  # 10 MB
ALLOWED_KEY_PREFIXES = ("receipts/",)


class StorageUploadError(Exception):
    """Blob storage refused or failed the upload."""


@functools.lru_cache(maxsize=1)
def get_s3_client():
    """S3-compatible client for the R2 receipt bucket, built once per process."""
    return boto3.client(
        "s3",
        endpoint_url=settings.R2_ENDPOINT_URL or None,
        aws_access_key_id=settings.R2_ACCESS_KEY_ID,
        aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
    )


def _validate_key(key: str) -> None:
    if not key.startswith(ALLOWED_KEY_PREFIXES) or ".." in key:
        raise ValueError(f"Storage key '{key}' is not allowed.")


async def upload_file_bytes(content: bytes, key: str, content_type: str) -> str:
    """Upload server-generated bytes to R2/S3 and return the public URL.

    In development (no R2 endpoint) nothing is uploaded and a mock URL is
    returned.

    Raises:
        ValueError: If the key is outside the allowed prefixes or the
            content exceeds the 10 MB size limit.
        StorageUploadError: If the bucket rejected the upload.
    """
    _validate_key(key)
    if len(content) > MAX_FILE_BYTES_SIZE:
        raise ValueError(f"Content too large. Maximum size is {MAX_FILE_BYTES_SIZE // (1024 * 1024)} MB.")

    if not settings.R2_ENDPOINT_URL:
        mock_url = f"{MOCK_STORAGE_URL}/{key}"
        logger.info("file_upload_mock", key=key, url=mock_url)
        return mock_url

    client = get_s3_client()
    try:
        await asyncio.to_thread(
            client.put_object,
            Bucket=settings.R2_BUCKET_NAME,
            Key=key,
            Body=content,
            ContentType=content_type,
        )
    except (BotoCoreError, ClientError) as exc:
        logger.error("file_upload_failed", key=key, error_type=type(exc).__name__)
        raise StorageUploadError(f"Upload of {key} failed") from exc

    url = f"{settings.R2_PUBLIC_URL}/{key}"
    logger.info("file_uploaded", key=key, url=url)
    return url
