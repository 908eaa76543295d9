from __future__ import annotations

from pathlib import Path

import allure
import pytest

from video_queue.config import ApiSettings, QueueSettings, Settings, StorageSettings

pytestmark = [
    allure.epic("Video Queue"),
    allure.feature("Configuration"),
]


def _valid_settings(**api_overrides: str) -> Settings:
    api = {"worker_api_key": "worker", "admin_api_token": "admin", **api_overrides}
    return Settings(
        storage=StorageSettings(signing_secret="secret"),
        api=ApiSettings(**api),
    )


def test_from_env_reads_prefixed_variables(monkeypatch) -> None:
    monkeypatch.setenv("VIDEO_QUEUE_DB_PATH", "/tmp/custom.db")
    monkeypatch.setenv("VIDEO_QUEUE_LEASE_SECONDS", "120")
    monkeypatch.setenv("VIDEO_QUEUE_RETRY_CEILING", "5")
    monkeypatch.setenv("VIDEO_QUEUE_STORAGE_BACKEND", " S3 ")
    monkeypatch.setenv("VIDEO_QUEUE_S3_ENDPOINT_URL", "")
    monkeypatch.setenv("VIDEO_QUEUE_WORKER_API_KEY", "worker-key")
    monkeypatch.setenv("VIDEO_QUEUE_LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.db_path == Path("/tmp/custom.db")
    assert settings.queue.default_lease_seconds == 120
    assert settings.queue.retry_ceiling == 5
    assert settings.storage.backend == "s3"
    assert settings.storage.s3_endpoint_url is None
    assert settings.storage.video_url_ttl_seconds == 604_800
    assert settings.api.worker_api_key == "worker-key"
    assert settings.api.log_level == "DEBUG"


def test_from_env_db_path_argument_wins(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("VIDEO_QUEUE_DB_PATH", "/tmp/ignored.db")
    assert Settings.from_env(db_path=tmp_path / "x.db").db_path == tmp_path / "x.db"


@pytest.mark.parametrize(
    ("queue_settings", "message"),
    [
        (QueueSettings(default_lease_seconds=0), "LEASE_SECONDS"),
        (QueueSettings(default_heartbeat_seconds=0), "HEARTBEAT_SECONDS"),
        (QueueSettings(default_lease_seconds=600, max_lease_seconds=60), "MAX_LEASE_SECONDS"),
        (QueueSettings(retry_ceiling=0), "RETRY_CEILING"),
        (QueueSettings(reconcile_interval_seconds=-1), "RECONCILE_INTERVAL_SECONDS"),
    ],
)
def test_validate_for_queue_rejects_bad_policy(queue_settings: QueueSettings, message: str) -> None:
    settings = Settings(queue=queue_settings, storage=StorageSettings(signing_secret="secret"))
    with pytest.raises(ValueError, match=message):
        settings.validate_for_queue()


def test_validate_for_queue_checks_storage_backend() -> None:
    with pytest.raises(ValueError, match="SIGNING_SECRET"):
        Settings().validate_for_queue()
    with pytest.raises(ValueError, match="Unsupported"):
        Settings(storage=StorageSettings(backend="gcs")).validate_for_queue()
    Settings(storage=StorageSettings(backend="s3")).validate_for_queue()


def test_validate_for_api_requires_distinct_credentials() -> None:
    _valid_settings().validate_for_api()
    with pytest.raises(ValueError, match="WORKER_API_KEY"):
        _valid_settings(worker_api_key=" ").validate_for_api()
    with pytest.raises(ValueError, match="ADMIN_API_TOKEN"):
        _valid_settings(admin_api_token="").validate_for_api()
    with pytest.raises(ValueError, match="must differ"):
        _valid_settings(admin_api_token="worker").validate_for_api()
