"""
Signed URL helpers for the recordings bucket.

Browsers upload recordings straight to Cloud Storage with a V4 signed
``PUT`` URL, and the speech service downloads them with a signed ``GET``
URL, so audio never passes through this service.

Usage::

    from vetscribe.storage import SignedUrlIssuer, generate_unique_key

    issuer = SignedUrlIssuer("my-bucket")
    key = generate_unique_key("consult.webm")
    upload = issuer.issue_write_url(key, "audio/webm")
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import PurePosixPath
from typing import Optional

from google.cloud import storage

from .errors import StorageURLError

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = "webm"
_ID_ALPHABET = string.ascii_lowercase + string.digits
_ID_LENGTH = 11


@dataclass(frozen=True)
class SignedUrl:
    url: str
    key: str
    expires_in: int


def generate_unique_key(
    original_name: str, namespace: str = "recordings", *, now: Optional[float] = None
) -> str:
    """Build a collision-resistant object key for an upload.

    Keys look like ``recordings/1757270063860-3ltl0fr4izt.webm``: the upload
    time in epoch milliseconds, a random id and the original extension
    (``webm`` when the name has none).
    """
    timestamp = int((time.time() if now is None else now) * 1000)
    random_id = "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_LENGTH))
    extension = PurePosixPath(original_name or "").suffix.lstrip(".").lower() or DEFAULT_EXTENSION
    prefix = f"{namespace.strip('/')}/" if namespace.strip("/") else ""
    return f"{prefix}{timestamp}-{random_id}.{extension}"


class SignedUrlIssuer:
    """Issue time-limited read and write URLs for objects in one bucket."""

    def __init__(self, bucket_name: str, client: Optional[storage.Client] = None) -> None:
        self.bucket_name = bucket_name
        self._client = client

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client()
        return self._client

    def _sign(self, key: str, ttl_seconds: int, method: str, content_type: Optional[str] = None) -> SignedUrl:
        if not key:
            raise StorageURLError("No object key provided")
        try:
            blob = self.client.bucket(self.bucket_name).blob(key)
            url = blob.generate_signed_url(
                version="v4",
                expiration=timedelta(seconds=ttl_seconds),
                method=method,
                content_type=content_type,
            )
        except Exception as exc:
            logger.exception("Failed to sign %s URL for %s/%s", method, self.bucket_name, key)
            raise StorageURLError(f"Failed to generate signed {method} URL") from exc
        return SignedUrl(url=url, key=key, expires_in=ttl_seconds)

    def issue_read_url(self, key: str, ttl_seconds: int = 3600) -> SignedUrl:
        """Return a signed ``GET`` URL for ``key`` valid for ``ttl_seconds``."""
        return self._sign(key, ttl_seconds, "GET")

    def issue_write_url(self, key: str, content_type: str, ttl_seconds: int = 3600) -> SignedUrl:
        """Return a signed ``PUT`` URL; the upload must send ``content_type``."""
        return self._sign(key, ttl_seconds, "PUT", content_type=content_type)
