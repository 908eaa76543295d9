from __future__ import annotations

from collections.abc import Iterator

import allure
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from conftest import ADMIN_TOKEN, GROUP_ID, PHOTO_IDS, WORKER_KEY
from video_queue.api import create_app
from video_queue.objects import ObjectStorageError
from video_queue.queue.services import VideoQueueService

pytestmark = [
    allure.epic("Video Queue"),
    allure.feature("HTTP API"),
]

WORKER = {"Authorization": f"Worker {WORKER_KEY}"}
ADMIN = {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture()
def client(settings, service: VideoQueueService) -> Iterator[TestClient]:
    app = create_app(settings, service=service)
    with TestClient(app) as test_client:
        yield test_client


def _add_tasks(client: TestClient, repeat_count: int = 1) -> list[str]:
    response = client.post(
        "/api/admin/tasks/add",
        json={
            "group_id": GROUP_ID,
            "tasks": [{"photo_id": PHOTO_IDS[0], "prompt": "dolly in", "repeat_count": repeat_count}],
        },
        headers=ADMIN,
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]["task_ids"]


def _next_task(client: TestClient, worker_id: str = "worker-a", **extra: object) -> dict:
    response = client.post(
        "/api/worker/next-task",
        json={"worker_id": worker_id, **extra},
        headers=WORKER,
    )
    assert response.status_code == 200, response.text
    return response.json()


def test_healthz_needs_no_credentials(client: TestClient) -> None:
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Authorization": "Worker wrong"},
        {"Authorization": f"Basic {WORKER_KEY}"},
        {"Authorization": f"Bearer {ADMIN_TOKEN}"},
    ],
)
def test_worker_routes_reject_bad_credentials(client: TestClient, headers: dict) -> None:
    response = client.post("/api/worker/next-task", json={"worker_id": "w"}, headers=headers)
    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "unauthorized"


def test_worker_key_is_accepted_with_bearer_scheme(client: TestClient) -> None:
    response = client.post(
        "/api/worker/next-task",
        json={"worker_id": "w"},
        headers={"Authorization": f"Bearer {WORKER_KEY}"},
    )
    assert response.status_code == 200
    assert response.json() == {"success": True, "data": None, "error": None}


def test_admin_routes_reject_worker_key(client: TestClient) -> None:
    response = client.get("/api/admin/tasks/queue", headers={"Authorization": f"Bearer {WORKER_KEY}"})
    assert response.status_code == 401
    assert client.get("/api/admin/tasks/queue").status_code == 401


def test_worker_flow_over_http(client: TestClient) -> None:
    (task_id,) = _add_tasks(client)

    assigned = _next_task(client)["data"]
    assert assigned["task_id"] == task_id
    assert assigned["photo_storage_path"] == f"{GROUP_ID}/{PHOTO_IDS[0]}.jpg"
    assert assigned["retry_count"] == 0

    heartbeat = client.post(
        "/api/worker/heartbeat",
        json={"task_id": task_id, "worker_id": "worker-a", "extend_seconds": 120},
        headers=WORKER,
    )
    assert heartbeat.status_code == 200
    assert heartbeat.json()["data"]["leased_until"] > assigned["leased_until"]

    upload = client.post(
        "/api/worker/presign",
        json={"operation": "upload", "task_id": task_id},
        headers=WORKER,
    )
    assert upload.status_code == 200
    storage_path = upload.json()["data"]["storage_path"]
    assert storage_path == f"videos/{task_id}.mp4"

    report = client.post(
        "/api/worker/report",
        json={
            "task_id": task_id,
            "worker_id": "worker-a",
            "status": "completed",
            "video_storage_path": storage_path,
        },
        headers=WORKER,
    )
    assert report.status_code == 200, report.text
    assert report.json()["data"]["status"] == "completed"
    assert report.json()["data"]["generated_video_url"].startswith(
        "http://testserver/objects/generated-videos/",
    )

    queue = client.get("/api/admin/tasks/queue", headers=ADMIN).json()["data"]
    assert queue["stats"]["completed"] == 1
    assert queue["tasks"][0]["task_id"] == task_id

    details = client.get(f"/api/admin/tasks/{task_id}", headers=ADMIN).json()["data"]
    assert [event["event_type"] for event in details["events"]] == [
        "enqueued",
        "claimed",
        "completed",
    ]

    group = client.get(f"/api/admin/groups/{GROUP_ID}/tasks", headers=ADMIN).json()["data"]
    assert group["video_status"] == "completed"
    assert group["photos"][0]["tasks"][0]["task_id"] == task_id


def test_local_objects_upload_and_download_round_trip(client: TestClient) -> None:
    (task_id,) = _add_tasks(client)
    _next_task(client)

    upload = client.post(
        "/api/worker/presign",
        json={"operation": "upload", "task_id": task_id},
        headers=WORKER,
    ).json()["data"]
    stored = client.put(upload["url"], content=b"fake mp4 bytes")
    assert stored.status_code == 200, stored.text
    assert stored.json()["data"]["size"] == len(b"fake mp4 bytes")

    report = client.post(
        "/api/worker/report",
        json={
            "task_id": task_id,
            "worker_id": "worker-a",
            "status": "completed",
            "video_storage_path": upload["storage_path"],
        },
        headers=WORKER,
    )
    video_url = report.json()["data"]["generated_video_url"]
    downloaded = client.get(video_url)
    assert downloaded.status_code == 200
    assert downloaded.content == b"fake mp4 bytes"

    tampered = client.get(video_url.replace("signature=", "signature=0"))
    assert tampered.status_code == 403
    assert tampered.json()["code"] == "forbidden"

    # GET signature does not authorize PUT
    overwrite = client.put(video_url, content=b"other")
    assert overwrite.status_code == 403

    photo = client.post(
        "/api/worker/presign",
        json={"operation": "download", "storage_path": f"{GROUP_ID}/{PHOTO_IDS[0]}.jpg"},
        headers=WORKER,
    ).json()["data"]
    missing = client.get(photo["url"])
    assert missing.status_code == 404
    assert missing.json()["code"] == "not_found"


def test_escaping_storage_paths_are_rejected_as_invalid_payload(client: TestClient) -> None:
    (task_id,) = _add_tasks(client)
    _next_task(client)

    report = client.post(
        "/api/worker/report",
        json={
            "task_id": task_id,
            "worker_id": "worker-a",
            "status": "completed",
            "video_storage_path": "../../etc/passwd",
        },
        headers=WORKER,
    )
    assert report.status_code == 400
    assert report.json()["code"] == "invalid_payload"

    presign = client.post(
        "/api/worker/presign",
        json={"operation": "download", "storage_path": "../../etc/passwd"},
        headers=WORKER,
    )
    assert presign.status_code == 400
    assert presign.json()["code"] == "invalid_payload"


def test_error_status_mapping(client: TestClient) -> None:
    (task_id,) = _add_tasks(client)
    _next_task(client)

    mismatch = client.post(
        "/api/worker/report",
        json={"task_id": task_id, "worker_id": "worker-b", "status": "failed"},
        headers=WORKER,
    )
    assert mismatch.status_code == 403
    assert mismatch.json()["code"] == "lease_mismatch"

    missing = client.post(
        "/api/worker/heartbeat",
        json={"task_id": "missing", "worker_id": "worker-a"},
        headers=WORKER,
    )
    assert missing.status_code == 404
    assert missing.json()["code"] == "task_not_found"

    no_artifact = client.post(
        "/api/worker/report",
        json={"task_id": task_id, "worker_id": "worker-a", "status": "completed"},
        headers=WORKER,
    )
    assert no_artifact.status_code == 400
    assert no_artifact.json()["code"] == "invalid_payload"

    bad_lease = client.post(
        "/api/worker/next-task",
        json={"worker_id": "worker-a", "lease_duration_seconds": -5},
        headers=WORKER,
    )
    assert bad_lease.status_code == 400

    schema = client.post("/api/worker/next-task", json={}, headers=WORKER)
    assert schema.status_code == 422
    assert schema.json()["code"] == "validation_error"

    bad_status = client.post(
        "/api/worker/report",
        json={"task_id": task_id, "worker_id": "worker-a", "status": "done"},
        headers=WORKER,
    )
    assert bad_status.status_code == 422

    unknown_group = client.post(
        "/api/admin/tasks/add",
        json={"group_id": "nope", "tasks": [{"photo_id": PHOTO_IDS[0], "prompt": "x"}]},
        headers=ADMIN,
    )
    assert unknown_group.status_code == 404
    assert unknown_group.json()["code"] == "group_not_found"


def test_retry_endpoint_enforces_ceiling_unless_forced(client: TestClient, settings) -> None:
    (task_id,) = _add_tasks(client)
    for _ in range(settings.queue.retry_ceiling):
        _next_task(client)
        failed = client.post(
            "/api/worker/report",
            json={"task_id": task_id, "worker_id": "worker-a", "status": "failed"},
            headers=WORKER,
        )
        assert failed.status_code == 200
        retry = client.post(f"/api/admin/tasks/{task_id}/retry", headers=ADMIN)
        if failed.json()["data"]["retry_count"] < settings.queue.retry_ceiling:
            assert retry.status_code == 200

    assert retry.status_code == 409
    assert retry.json()["code"] == "retry_ceiling_exceeded"

    forced = client.post(f"/api/admin/tasks/{task_id}/retry?force=true", headers=ADMIN)
    assert forced.status_code == 200
    assert forced.json()["data"]["status"] == "pending"
    assert forced.json()["data"]["retry_count"] == 0

    pending = client.post(f"/api/admin/tasks/{task_id}/retry", headers=ADMIN)
    assert pending.status_code == 409
    assert pending.json()["code"] == "state_conflict"


def test_reconcile_delete_and_group_override(client: TestClient, clock) -> None:
    task_ids = _add_tasks(client, repeat_count=2)
    _next_task(client, lease_duration_seconds=5)
    clock.advance(10)

    reconciled = client.post("/api/admin/tasks/reconcile", headers=ADMIN)
    assert reconciled.json()["data"] == {"reclaimed": 1}

    failed = client.get("/api/admin/tasks/queue?status=failed", headers=ADMIN).json()["data"]
    assert failed["stats"]["failed"] == 1
    assert failed["tasks"][0]["error_message"].startswith("Lease expired")

    deleted = client.delete(f"/api/admin/tasks/{task_ids[1]}", headers=ADMIN)
    assert deleted.json()["data"] == {"task_id": task_ids[1], "deleted": True}
    assert client.get(f"/api/admin/tasks/{task_ids[1]}", headers=ADMIN).status_code == 404

    patched = client.patch(
        f"/api/admin/groups/{GROUP_ID}/video",
        json={"video_status": "failed"},
        headers=ADMIN,
    )
    assert patched.status_code == 200
    assert patched.json()["data"]["video_status"] == "failed"

    removed = client.delete(f"/api/admin/groups/{GROUP_ID}", headers=ADMIN)
    assert removed.json()["data"]["deleted_photos"] == len(PHOTO_IDS)
    assert client.get(f"/api/admin/groups/{GROUP_ID}/tasks", headers=ADMIN).status_code == 404


def test_store_outage_maps_to_retryable_503(client: TestClient, service, monkeypatch) -> None:
    def _locked(**_: object) -> None:
        raise OperationalError("UPDATE video_tasks", {}, Exception("database is locked"))

    monkeypatch.setattr(service, "request_task", _locked)
    response = client.post("/api/worker/next-task", json={"worker_id": "w"}, headers=WORKER)
    assert response.status_code == 503
    assert response.json()["retryable"] is True
    assert response.json()["code"] == "store_unavailable"


def test_storage_failure_maps_to_502(client: TestClient, service, monkeypatch) -> None:
    def _broken(**_: object) -> None:
        raise ObjectStorageError("bucket unreachable")

    monkeypatch.setattr(service, "presign_download", _broken)
    response = client.post(
        "/api/worker/presign",
        json={"operation": "download", "storage_path": "g/a.jpg"},
        headers=WORKER,
    )
    assert response.status_code == 502
    assert response.json()["error"] == "bucket unreachable"


def test_create_app_fails_fast_without_credentials(settings) -> None:
    settings.api.worker_api_key = ""
    with pytest.raises(ValueError, match="WORKER_API_KEY"):
        create_app(settings)
