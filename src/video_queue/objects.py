"""Object storage collaborators: signed URLs and delete-by-path."""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Any, Protocol
from urllib.parse import quote, urlencode

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from video_queue.config import StorageSettings
from video_queue.storage.common import utc_now

logger = logging.getLogger(__name__)

_S3_DELETE_BATCH = 1000


class ObjectStorageError(RuntimeError):
    """Object storage backend rejected or failed an operation."""


class InvalidStoragePathError(ObjectStorageError):
    """A storage path is empty or escapes its bucket."""


class ObjectStorage(Protocol):
    def signed_download_url(self, *, bucket: str, path: str, expires_in: int) -> str: ...

    def signed_upload_url(self, *, bucket: str, path: str, expires_in: int) -> str: ...

    def delete_objects(self, *, bucket: str, paths: list[str]) -> None: ...


class LocalObjectStorage:
    """Directory-backed storage with HMAC-signed URLs.

    Objects live under ``root/<bucket>/<path>``. URLs carry ``method``,
    ``expires`` (unix seconds) and ``signature`` query parameters that
    :meth:`verify_signature` checks.
    """

    def __init__(
        self,
        *,
        root: Path,
        public_base_url: str,
        signing_secret: str,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not signing_secret:
            raise ObjectStorageError("Local object storage requires a signing secret.")
        self.root = root
        self.public_base_url = public_base_url.rstrip("/")
        self._secret = signing_secret.encode("utf-8")
        self.clock = clock

    def signed_download_url(self, *, bucket: str, path: str, expires_in: int) -> str:
        return self._signed_url(method="GET", bucket=bucket, path=path, expires_in=expires_in)

    def signed_upload_url(self, *, bucket: str, path: str, expires_in: int) -> str:
        return self._signed_url(method="PUT", bucket=bucket, path=path, expires_in=expires_in)

    def verify_signature(  # noqa: PLR0913
        self,
        *,
        method: str,
        bucket: str,
        path: str,
        expires: int,
        signature: str,
    ) -> bool:
        if expires < int(self.clock().timestamp()):
            return False
        expected = self._sign(method=method, bucket=bucket, path=path, expires=expires)
        return hmac.compare_digest(expected, signature)

    def object_path(self, *, bucket: str, path: str) -> Path:
        return self.root / bucket / _safe_key(path)

    def delete_objects(self, *, bucket: str, paths: list[str]) -> None:
        for path in paths:
            target = self.object_path(bucket=bucket, path=path)
            try:
                target.unlink(missing_ok=True)
            except OSError as error:
                raise ObjectStorageError(f"Failed to delete {bucket}/{path}: {error}") from error

    def _signed_url(self, *, method: str, bucket: str, path: str, expires_in: int) -> str:
        key = _safe_key(path)
        expires = int(self.clock().timestamp()) + expires_in
        query = urlencode(
            {
                "method": method,
                "expires": expires,
                "signature": self._sign(method=method, bucket=bucket, path=key, expires=expires),
            },
        )
        return f"{self.public_base_url}/{quote(bucket)}/{quote(key)}?{query}"

    def _sign(self, *, method: str, bucket: str, path: str, expires: int) -> str:
        message = f"{method}\n{bucket}\n{path}\n{expires}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()


class S3ObjectStorage:
    """S3-compatible storage using SigV4 presigned URLs."""

    def __init__(self, client: Any) -> None:
        self.client = client

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> S3ObjectStorage:
        session = boto3.session.Session(
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            region_name=settings.s3_region,
        )
        client = session.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            config=BotoConfig(
                s3={"addressing_style": "path"},
                signature_version="s3v4",
            ),
        )
        return cls(client)

    def signed_download_url(self, *, bucket: str, path: str, expires_in: int) -> str:
        return self._presign("get_object", "GET", bucket=bucket, path=path, expires_in=expires_in)

    def signed_upload_url(self, *, bucket: str, path: str, expires_in: int) -> str:
        return self._presign("put_object", "PUT", bucket=bucket, path=path, expires_in=expires_in)

    def delete_objects(self, *, bucket: str, paths: list[str]) -> None:
        keys = [_safe_key(path) for path in paths]
        for start in range(0, len(keys), _S3_DELETE_BATCH):
            batch = keys[start : start + _S3_DELETE_BATCH]
            try:
                response = self.client.delete_objects(
                    Bucket=bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as error:
                raise ObjectStorageError(f"Failed to delete objects in {bucket}: {error}") from error
            errors = response.get("Errors") or []
            if errors:
                raise ObjectStorageError(
                    f"Failed to delete {len(errors)} objects in {bucket}: "
                    f"{errors[0].get('Key')} ({errors[0].get('Code')})",
                )

    def _presign(  # noqa: PLR0913
        self,
        client_method: str,
        http_method: str,
        *,
        bucket: str,
        path: str,
        expires_in: int,
    ) -> str:
        try:
            return self.client.generate_presigned_url(
                ClientMethod=client_method,
                Params={"Bucket": bucket, "Key": _safe_key(path)},
                ExpiresIn=expires_in,
                HttpMethod=http_method,
            )
        except (BotoCoreError, ClientError) as error:
            raise ObjectStorageError(f"Failed to sign {bucket}/{path}: {error}") from error


def build_object_storage(
    settings: StorageSettings,
    *,
    clock: Callable[[], datetime] = utc_now,
) -> ObjectStorage:
    if settings.backend == "s3":
        return S3ObjectStorage.from_settings(settings)
    if settings.backend == "local":
        return LocalObjectStorage(
            root=settings.local_root,
            public_base_url=settings.public_base_url,
            signing_secret=settings.signing_secret,
            clock=clock,
        )
    raise ObjectStorageError(f"Unsupported storage backend: {settings.backend}")


def _safe_key(path: str) -> str:
    """Normalize a storage path to a relative key without parent traversal."""

    key = path.strip().lstrip("/")
    parts = PurePosixPath(key).parts
    if not key or any(part in {"..", "."} for part in parts):
        raise InvalidStoragePathError(f"Invalid storage path: {path!r}")
    return str(PurePosixPath(*parts))
