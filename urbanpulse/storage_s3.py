"""
High-level helpers for interacting with AWS S3 (or compatible services like MinIO).

This module encapsulates object writes, public URL construction and secure
defaults (SSE-KMS, explicit content-type bindings, CloudFront integration)
for report media.
"""

from __future__ import annotations

from typing import Optional, Dict, Any
import logging
import mimetypes

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings, get_settings

logger = logging.getLogger("urbanpulse.storage_s3")


class StorageError(RuntimeError):
    """Raised when storage operations fail."""


class S3Storage:
    """Wrapper over boto3 with sane defaults for report media."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        settings = settings or get_settings()
        session_kwargs = {}

        if settings.s3_access_key_id and settings.s3_secret_access_key:
            session_kwargs.update(
                aws_access_key_id=settings.s3_access_key_id,
                aws_secret_access_key=settings.s3_secret_access_key,
            )

        session = (
            boto3.session.Session(**session_kwargs)
            if session_kwargs
            else boto3.session.Session()
        )

        client_kwargs = {
            "service_name": "s3",
            "region_name": settings.s3_region,
            "config": Config(signature_version="s3v4"),
        }
        if settings.s3_endpoint:
            client_kwargs["endpoint_url"] = settings.s3_endpoint
        if settings.s3_use_ssl is False:
            client_kwargs["use_ssl"] = False

        self._client = session.client(**client_kwargs)
        self._bucket = settings.s3_bucket
        self._region = settings.s3_region
        self._kms_key_id = settings.kms_key_id
        self._cloudfront_domain = settings.cloudfront_domain
        self._public_url = settings.s3_public_url

    # ---------- helpers ----------
    @staticmethod
    def build_key(kind: str, asset_id: str, extension: str) -> str:
        return f"reports/{kind}/{asset_id}.{extension}"

    def _apply_object_defaults(
        self, extra: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if self._kms_key_id:
            params["ServerSideEncryption"] = "aws:kms"
            params["SSEKMSKeyId"] = self._kms_key_id
        if extra:
            params.update(extra)
        return params

    def public_url(self, key: str) -> str:
        """Stable retrieval URL for an object (no expiring signature)."""
        if self._cloudfront_domain:
            return f"https://{self._cloudfront_domain}/{key}"
        if self._public_url:
            return f"{self._public_url.rstrip('/')}/{key}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"

    # ---------- object helpers ----------
    def put_object(
        self, key: str, data: bytes, content_type: Optional[str] = None
    ) -> None:
        extra = {"Metadata": {"managed-by": "urbanpulse"}}
        if content_type:
            extra["ContentType"] = content_type
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                **self._apply_object_defaults(extra),
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"put_object failed for {key}: {exc}") from exc

    def ensure_bucket(self) -> None:
        """Best-effort check that bucket exists (useful for local MinIO)."""
        try:
            self._client.head_bucket(Bucket=self._bucket)
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code")
            if error_code in {"404", "NoSuchBucket"}:
                logger.info(
                    "Bucket %s missing; attempting to create for dev/local use",
                    self._bucket,
                )
                params = {"Bucket": self._bucket}
                if self._region and self._region != "us-east-1":
                    params["CreateBucketConfiguration"] = {"LocationConstraint": self._region}
                self._client.create_bucket(**params)
            else:
                raise


def guess_extension(content_type: str) -> str:
    # audio/webm has no stdlib mapping on most platforms
    overrides = {"audio/webm": "webm", "audio/ogg": "ogg", "image/jpeg": "jpg"}
    base = content_type.split(";", 1)[0].strip().lower()
    if base in overrides:
        return overrides[base]
    mapped = mimetypes.guess_extension(base) or ".bin"
    return mapped.lstrip(".")


__all__ = ["S3Storage", "StorageError", "guess_extension"]
