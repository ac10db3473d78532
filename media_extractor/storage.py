"""Durable public copies of media in S3-compatible object storage."""
import re
import time
from typing import Callable, Optional

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError

from media_extractor import settings
from media_extractor.logging_conf import logger

# Error codes meaning the object was being written by someone else at the same time
CONFLICT_CODES = {"OperationAborted", "ConditionalRequestConflict", "Conflict"}


class StorageUploader:
    """Uploads bytes with a public-read ACL and returns the public URL."""

    def __init__(self, client=None, bucket: Optional[str] = None, public_base: Optional[str] = None,
                 max_retries: int = None, sleep: Callable[[float], None] = time.sleep):
        self.client = client or self._build_client()
        self.bucket = bucket or settings.S3_BUCKET_NAME
        self.public_base = (public_base or settings.S3_PUBLIC_URL or "").rstrip("/")
        self.max_retries = settings.UPLOAD_MAX_RETRIES if max_retries is None else max_retries
        self.sleep = sleep

    @staticmethod
    def _build_client():
        return boto3.client(
            "s3",
            region_name=settings.S3_REGION,
            endpoint_url=settings.S3_ENDPOINT,
            aws_access_key_id=settings.S3_ACCESS_KEY_ID,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            config=Config(
                signature_version="s3v4",
                connect_timeout=settings.UPLOAD_TIMEOUT,
                read_timeout=settings.UPLOAD_TIMEOUT,
            ),
        )

    def upload(self, data: bytes, key: str, content_type: str) -> str:
        """
        Upload bytes and return a public URL.

        Concurrent-modification conflicts are retried with linear backoff
        (1s, 2s, ...); every other error is raised immediately.
        """
        attempt = 0
        while True:
            try:
                self.client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=data,
                    ACL="public-read",
                    ContentType=content_type or "application/octet-stream",
                )
                break
            except ClientError as e:
                if not is_conflict(e) or attempt >= self.max_retries:
                    raise
                attempt += 1
                logger.warning(f"Upload conflict on {key}, retry {attempt}/{self.max_retries}")
                self.sleep(1 * attempt)

        url = f"{self.public_base}/{key}"
        logger.info(f"Uploaded {len(data)} bytes to {url}")
        return url


def is_conflict(error: ClientError) -> bool:
    response = error.response or {}
    code = response.get("Error", {}).get("Code", "")
    status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code in CONFLICT_CODES or status == 409


def object_key(*parts: str) -> str:
    """Join key segments, keeping each one URL and path safe."""
    safe = []
    for part in parts:
        for segment in str(part or "").split("/"):
            segment = segment.strip().replace(" ", "-")
            segment = re.sub(r"[^A-Za-z0-9._-]", "_", segment).strip("_")
            if segment and segment not in (".", ".."):
                safe.append(segment[:150])
    return "/".join(safe)
