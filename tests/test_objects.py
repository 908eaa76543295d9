from __future__ import annotations

from pathlib import Path
from urllib.parse import parse_qs, urlparse

import allure
import pytest
from botocore.stub import Stubber

from conftest import FakeClock
from video_queue.config import StorageSettings
from video_queue.objects import (
    LocalObjectStorage,
    ObjectStorageError,
    S3ObjectStorage,
    build_object_storage,
)

pytestmark = [
    allure.epic("Video Queue"),
    allure.feature("Object Storage"),
]


def _s3_settings() -> StorageSettings:
    return StorageSettings(
        backend="s3",
        s3_endpoint_url="http://minio.test:9000",
        s3_region="us-east-1",
        s3_access_key="AKIDEXAMPLE",
        s3_secret_key="not-a-real-secret",
    )


def _local(tmp_path: Path, clock: FakeClock) -> LocalObjectStorage:
    return LocalObjectStorage(
        root=tmp_path,
        public_base_url="http://objects.test/",
        signing_secret="secret",
        clock=clock,
    )


def test_local_signed_url_verifies_until_expiry(tmp_path: Path) -> None:
    clock = FakeClock()
    storage = _local(tmp_path, clock)

    url = storage.signed_download_url(bucket="group-photos", path="/g1/a b.jpg", expires_in=60)
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert parsed.netloc == "objects.test"
    assert parsed.path == "/group-photos/g1/a%20b.jpg"
    assert query["method"] == ["GET"]

    signature = query["signature"][0]
    expires = int(query["expires"][0])
    assert storage.verify_signature(
        method="GET",
        bucket="group-photos",
        path="g1/a b.jpg",
        expires=expires,
        signature=signature,
    )
    assert not storage.verify_signature(
        method="PUT",
        bucket="group-photos",
        path="g1/a b.jpg",
        expires=expires,
        signature=signature,
    )

    clock.advance(61)
    assert not storage.verify_signature(
        method="GET",
        bucket="group-photos",
        path="g1/a b.jpg",
        expires=expires,
        signature=signature,
    )


def test_local_storage_rejects_traversal_and_missing_secret(tmp_path: Path) -> None:
    storage = _local(tmp_path, FakeClock())
    with pytest.raises(ObjectStorageError, match="Invalid storage path"):
        storage.signed_upload_url(bucket="generated-videos", path="../etc/passwd", expires_in=60)
    with pytest.raises(ObjectStorageError, match="signing secret"):
        LocalObjectStorage(root=tmp_path, public_base_url="http://x", signing_secret="")


def test_local_delete_ignores_missing_objects(tmp_path: Path) -> None:
    storage = _local(tmp_path, FakeClock())
    target = storage.object_path(bucket="generated-videos", path="videos/a.mp4")
    target.parent.mkdir(parents=True)
    target.write_bytes(b"data")

    storage.delete_objects(bucket="generated-videos", paths=["videos/a.mp4", "videos/missing.mp4"])
    assert not target.exists()


def test_s3_presigned_urls_use_path_style_sigv4() -> None:
    storage = S3ObjectStorage.from_settings(_s3_settings())

    download = storage.signed_download_url(
        bucket="generated-videos",
        path="videos/t1.mp4",
        expires_in=604_800,
    )
    parsed = urlparse(download)
    query = parse_qs(parsed.query)
    assert parsed.netloc == "minio.test:9000"
    assert parsed.path == "/generated-videos/videos/t1.mp4"
    assert query["X-Amz-Algorithm"] == ["AWS4-HMAC-SHA256"]
    assert query["X-Amz-Expires"] == ["604800"]

    upload = storage.signed_upload_url(bucket="generated-videos", path="videos/t1.mp4", expires_in=60)
    assert "X-Amz-Signature=" in upload


def test_s3_delete_objects_batches_and_reports_errors() -> None:
    storage = S3ObjectStorage.from_settings(_s3_settings())
    stubber = Stubber(storage.client)
    stubber.add_response(
        "delete_objects",
        {"Deleted": [{"Key": "videos/a.mp4"}]},
        {
            "Bucket": "generated-videos",
            "Delete": {"Objects": [{"Key": "videos/a.mp4"}], "Quiet": True},
        },
    )
    stubber.add_response(
        "delete_objects",
        {"Errors": [{"Key": "videos/b.mp4", "Code": "AccessDenied", "Message": "denied"}]},
        {
            "Bucket": "generated-videos",
            "Delete": {"Objects": [{"Key": "videos/b.mp4"}], "Quiet": True},
        },
    )
    stubber.add_client_error("delete_objects", service_error_code="NoSuchBucket")

    with stubber:
        storage.delete_objects(bucket="generated-videos", paths=["videos/a.mp4"])
        with pytest.raises(ObjectStorageError, match="AccessDenied"):
            storage.delete_objects(bucket="generated-videos", paths=["videos/b.mp4"])
        with pytest.raises(ObjectStorageError, match="Failed to delete objects"):
            storage.delete_objects(bucket="missing", paths=["videos/c.mp4"])
    stubber.assert_no_pending_responses()


def test_build_object_storage_selects_backend(tmp_path: Path) -> None:
    local = build_object_storage(
        StorageSettings(local_root=tmp_path, signing_secret="secret"),
    )
    assert isinstance(local, LocalObjectStorage)
    assert isinstance(build_object_storage(_s3_settings()), S3ObjectStorage)
    with pytest.raises(ObjectStorageError, match="Unsupported"):
        build_object_storage(StorageSettings(backend="ftp"))
