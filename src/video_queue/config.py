"""Runtime configuration for the queue, object storage, and HTTP surface."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

SUPPORTED_STORAGE_BACKENDS = ("local", "s3")


@dataclass(slots=True)
class QueueSettings:
    """Lease, heartbeat, and retry policy."""

    default_lease_seconds: int = 600
    default_heartbeat_seconds: int = 300
    max_lease_seconds: int = 86_400
    retry_ceiling: int = 3
    reconcile_interval_seconds: int = 60


@dataclass(slots=True)
class StorageSettings:
    """Object storage collaborator settings."""

    backend: str = "local"
    local_root: Path = Path(".video_queue_objects")
    public_base_url: str = "http://localhost:8000/objects"
    signing_secret: str = ""
    photos_bucket: str = "group-photos"
    videos_bucket: str = "generated-videos"
    photo_url_ttl_seconds: int = 3_600
    upload_url_ttl_seconds: int = 3_600
    video_url_ttl_seconds: int = 604_800
    s3_endpoint_url: str | None = None
    s3_region: str = "us-east-1"
    s3_access_key: str | None = None
    s3_secret_key: str | None = None


@dataclass(slots=True)
class ApiSettings:
    """HTTP server and credential settings."""

    host: str = "127.0.0.1"
    port: int = 8000
    worker_api_key: str = ""
    admin_api_token: str = ""
    log_level: str = "INFO"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".video_queue.db")
    sqlite_busy_timeout_ms: int = 5_000
    queue: QueueSettings = field(default_factory=QueueSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    api: ApiSettings = field(default_factory=ApiSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("VIDEO_QUEUE_DB_PATH", ".video_queue.db")),
            sqlite_busy_timeout_ms=int(os.getenv("VIDEO_QUEUE_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            queue=QueueSettings(
                default_lease_seconds=int(os.getenv("VIDEO_QUEUE_LEASE_SECONDS", "600")),
                default_heartbeat_seconds=int(
                    os.getenv("VIDEO_QUEUE_HEARTBEAT_SECONDS", "300"),
                ),
                max_lease_seconds=int(os.getenv("VIDEO_QUEUE_MAX_LEASE_SECONDS", "86400")),
                retry_ceiling=int(os.getenv("VIDEO_QUEUE_RETRY_CEILING", "3")),
                reconcile_interval_seconds=int(
                    os.getenv("VIDEO_QUEUE_RECONCILE_INTERVAL_SECONDS", "60"),
                ),
            ),
            storage=StorageSettings(
                backend=os.getenv("VIDEO_QUEUE_STORAGE_BACKEND", "local").strip().lower(),
                local_root=Path(os.getenv("VIDEO_QUEUE_STORAGE_ROOT", ".video_queue_objects")),
                public_base_url=os.getenv(
                    "VIDEO_QUEUE_STORAGE_PUBLIC_URL",
                    "http://localhost:8000/objects",
                ),
                signing_secret=os.getenv("VIDEO_QUEUE_STORAGE_SIGNING_SECRET", ""),
                photos_bucket=os.getenv("VIDEO_QUEUE_PHOTOS_BUCKET", "group-photos"),
                videos_bucket=os.getenv("VIDEO_QUEUE_VIDEOS_BUCKET", "generated-videos"),
                photo_url_ttl_seconds=int(os.getenv("VIDEO_QUEUE_PHOTO_URL_TTL_SECONDS", "3600")),
                upload_url_ttl_seconds=int(
                    os.getenv("VIDEO_QUEUE_UPLOAD_URL_TTL_SECONDS", "3600"),
                ),
                video_url_ttl_seconds=int(
                    os.getenv("VIDEO_QUEUE_VIDEO_URL_TTL_SECONDS", "604800"),
                ),
                s3_endpoint_url=os.getenv("VIDEO_QUEUE_S3_ENDPOINT_URL") or None,
                s3_region=os.getenv("VIDEO_QUEUE_S3_REGION", "us-east-1"),
                s3_access_key=os.getenv("VIDEO_QUEUE_S3_ACCESS_KEY") or None,
                s3_secret_key=os.getenv("VIDEO_QUEUE_S3_SECRET_KEY") or None,
            ),
            api=ApiSettings(
                host=os.getenv("VIDEO_QUEUE_API_HOST", "127.0.0.1"),
                port=int(os.getenv("VIDEO_QUEUE_API_PORT", "8000")),
                worker_api_key=os.getenv("VIDEO_QUEUE_WORKER_API_KEY", ""),
                admin_api_token=os.getenv("VIDEO_QUEUE_ADMIN_API_TOKEN", ""),
                log_level=os.getenv("VIDEO_QUEUE_LOG_LEVEL", "INFO").upper(),
            ),
        )

    def validate_for_queue(self) -> None:
        """Raise configuration error if lease or retry policy is unusable."""

        if self.queue.default_lease_seconds <= 0:
            raise ValueError("VIDEO_QUEUE_LEASE_SECONDS must be > 0.")
        if self.queue.default_heartbeat_seconds <= 0:
            raise ValueError("VIDEO_QUEUE_HEARTBEAT_SECONDS must be > 0.")
        if self.queue.max_lease_seconds < self.queue.default_lease_seconds:
            raise ValueError(
                "VIDEO_QUEUE_MAX_LEASE_SECONDS must be >= VIDEO_QUEUE_LEASE_SECONDS.",
            )
        if self.queue.retry_ceiling <= 0:
            raise ValueError("VIDEO_QUEUE_RETRY_CEILING must be > 0.")
        if self.queue.reconcile_interval_seconds < 0:
            raise ValueError("VIDEO_QUEUE_RECONCILE_INTERVAL_SECONDS must be >= 0.")
        if self.storage.backend not in SUPPORTED_STORAGE_BACKENDS:
            raise ValueError(
                f"Unsupported VIDEO_QUEUE_STORAGE_BACKEND={self.storage.backend!r}. "
                f"Expected one of: {', '.join(SUPPORTED_STORAGE_BACKENDS)}.",
            )
        if self.storage.backend == "local" and not self.storage.signing_secret:
            raise ValueError(
                "VIDEO_QUEUE_STORAGE_SIGNING_SECRET is required for the local storage backend.",
            )

    def validate_for_api(self) -> None:
        """Fail fast when worker or admin credentials are not configured."""

        self.validate_for_queue()
        if not self.api.worker_api_key.strip():
            raise ValueError("VIDEO_QUEUE_WORKER_API_KEY is not configured.")
        if not self.api.admin_api_token.strip():
            raise ValueError("VIDEO_QUEUE_ADMIN_API_TOKEN is not configured.")
        if self.api.worker_api_key == self.api.admin_api_token:
            raise ValueError(
                "VIDEO_QUEUE_WORKER_API_KEY and VIDEO_QUEUE_ADMIN_API_TOKEN must differ.",
            )
