from __future__ import annotations

import hashlib
import hmac
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict
from urllib.parse import quote, urlencode

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when the object store rejects or cannot complete an operation."""


@dataclass(slots=True)
class StoredObject:
    key: str
    url: str
    size: int
    content_type: str
    etag: str | None = None
    metadata: Dict[str, str] = field(default_factory=dict)


def _sign_local_url(secret_key: str, object_key: str, expires: int) -> str:
    """Create HMAC-SHA256 signature for a local storage URL."""
    message = f"{object_key}:{expires}"
    return hmac.new(
        secret_key.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_local_url_signature(
    secret_key: str, object_key: str, expires: int, signature: str
) -> bool:
    """Verify HMAC signature and expiry for a local storage URL.

    Returns False if the signature is invalid or the URL has expired.
    """
    if int(time.time()) > expires:
        return False
    expected = _sign_local_url(secret_key, object_key, expires)
    return hmac.compare_digest(expected, signature)


class StorageAdapter(ABC):
    provider: str = "local"
    bucket: str | None = None

    @abstractmethod
    def put_object(
        self,
        object_key: str,
        data: bytes,
        content_type: str,
        metadata: Dict[str, str] | None = None,
    ) -> StoredObject:
        pass

    @abstractmethod
    def public_url(self, object_key: str) -> str:
        """Stable URL recorded alongside the object; may require signing to fetch."""

    @abstractmethod
    def generate_download_url(self, object_key: str, expires_in: int = 3600) -> str:
        pass

    @abstractmethod
    def delete_object(self, object_key: str) -> None:
        pass

    @abstractmethod
    def object_exists(self, object_key: str) -> bool:
        pass

    @abstractmethod
    def list_objects(self, prefix: str = "") -> list[str]:
        pass

    @abstractmethod
    def ping(self) -> bool:
        pass


class LocalFileSystemAdapter(StorageAdapter):
    def __init__(self, base_path: str, base_url: str, *, signing_key: str = ""):
        self.base_path = Path(base_path)
        self.base_url = base_url.rstrip("/")
        self.signing_key = signing_key
        self.provider = "local"
        self.bucket = "local"
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve_safe_path(self, object_key: str) -> Path:
        if "\\" in object_key:
            raise ValueError("Invalid object key")
        key_path = PurePosixPath(object_key)
        if key_path.is_absolute() or ".." in key_path.parts:
            raise ValueError("Invalid object key")
        base = self.base_path.resolve()
        resolved = (base / Path(object_key)).resolve()
        if resolved != base and base not in resolved.parents:
            raise ValueError("Invalid object key")
        return resolved

    def resolve_path(self, object_key: str) -> Path:
        return self._resolve_safe_path(object_key)

    def put_object(
        self,
        object_key: str,
        data: bytes,
        content_type: str,
        metadata: Dict[str, str] | None = None,
    ) -> StoredObject:
        path = self._resolve_safe_path(object_key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Failed to upload file: {exc}") from exc
        return StoredObject(
            key=object_key,
            url=self.public_url(object_key),
            size=len(data),
            content_type=content_type,
            etag=hashlib.md5(data).hexdigest(),
            metadata=dict(metadata or {}),
        )

    def public_url(self, object_key: str) -> str:
        return f"{self.base_url}/api/v1/files/local-content?{urlencode({'key': object_key})}"

    def generate_download_url(self, object_key: str, expires_in: int = 3600) -> str:
        expires = int(time.time()) + expires_in
        sig = _sign_local_url(self.signing_key, object_key, expires)
        params = urlencode({"key": object_key, "expires": expires, "signature": sig})
        return f"{self.base_url}/api/v1/files/local-content?{params}"

    def delete_object(self, object_key: str) -> None:
        path = self._resolve_safe_path(object_key)
        if path.exists():
            path.unlink()

    def object_exists(self, object_key: str) -> bool:
        try:
            path = self._resolve_safe_path(object_key)
        except ValueError:
            return False
        return path.exists()

    def list_objects(self, prefix: str = "") -> list[str]:
        base = self.base_path.resolve()
        return sorted(
            path.relative_to(base).as_posix()
            for path in base.rglob("*")
            if path.is_file() and path.relative_to(base).as_posix().startswith(prefix)
        )

    def ping(self) -> bool:
        return self.base_path.exists()


class S3StorageAdapter(StorageAdapter):
    """S3-compatible object store (AWS S3 or a self-hosted MinIO endpoint)."""

    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str = "us-east-1",
        public_base_url: str | None = None,
        client: Any | None = None,
    ):
        self.provider = "s3"
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.public_base_url = (public_base_url or endpoint_url or "").rstrip("/")
        if client is None:
            import boto3
            from botocore.config import Config

            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
            )
        self.client = client
        self._bucket_checked = False

    def _client_errors(self) -> tuple[type[BaseException], ...]:
        from botocore.exceptions import BotoCoreError, ClientError

        return (BotoCoreError, ClientError)

    def ensure_bucket(self) -> None:
        if self._bucket_checked:
            return
        errors = self._client_errors()
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except errors:
            try:
                self.client.create_bucket(Bucket=self.bucket)
                logger.info("Created object storage bucket", extra={"bucket": self.bucket})
            except errors as exc:
                raise StorageError(f"Failed to ensure bucket {self.bucket}: {exc}") from exc
        self._bucket_checked = True

    def put_object(
        self,
        object_key: str,
        data: bytes,
        content_type: str,
        metadata: Dict[str, str] | None = None,
    ) -> StoredObject:
        self.ensure_bucket()
        try:
            response = self.client.put_object(
                Bucket=self.bucket,
                Key=object_key,
                Body=data,
                ContentType=content_type,
                Metadata={k: str(v) for k, v in (metadata or {}).items()},
            )
        except self._client_errors() as exc:
            raise StorageError(f"Failed to upload file: {exc}") from exc
        return StoredObject(
            key=object_key,
            url=self.public_url(object_key),
            size=len(data),
            content_type=content_type,
            etag=(response or {}).get("ETag", "").strip('"') or None,
            metadata=dict(metadata or {}),
        )

    def public_url(self, object_key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{self.bucket}/{quote(object_key)}"
        return f"https://{self.bucket}.s3.amazonaws.com/{quote(object_key)}"

    def generate_download_url(self, object_key: str, expires_in: int = 3600) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": object_key},
                ExpiresIn=expires_in,
            )
        except self._client_errors() as exc:
            raise StorageError(f"Failed to sign download URL: {exc}") from exc

    def delete_object(self, object_key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=object_key)
        except self._client_errors() as exc:
            raise StorageError(f"Failed to delete file: {exc}") from exc

    def object_exists(self, object_key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=object_key)
            return True
        except self._client_errors():
            return False

    def list_objects(self, prefix: str = "") -> list[str]:
        keys: list[str] = []
        paginator = self.client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(item["Key"] for item in page.get("Contents", []))
        except self._client_errors() as exc:
            raise StorageError(f"Failed to list files: {exc}") from exc
        return keys

    def ping(self) -> bool:
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return True
        except self._client_errors():
            return False
