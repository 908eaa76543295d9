"""HTTP client used by generation workers."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from video_queue.queue.errors import (
    InvalidPayloadError,
    LeaseMismatchError,
    QueueError,
    TaskNotFoundError,
    TaskStateConflictError,
)
from video_queue.queue.models import PresignedUrl, ReportOutcome, TaskAssignment

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class WorkerApiError(RuntimeError):
    """Non-queue API failure (auth, store outage, storage, unexpected status)."""

    def __init__(self, message: str, *, status_code: int, retryable: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class WorkerApiClient:
    """Wraps the worker routes and raises queue errors for rejected calls."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self._client = client or httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
        )
        self._headers = {"Authorization": f"Worker {api_key}"}

    def request_task(
        self,
        *,
        worker_id: str,
        lease_duration_seconds: int | None = None,
    ) -> TaskAssignment | None:
        payload: dict[str, Any] = {"worker_id": worker_id}
        if lease_duration_seconds is not None:
            payload["lease_duration_seconds"] = lease_duration_seconds
        data = self._post("/api/worker/next-task", payload, worker_id=worker_id)
        if data is None:
            return None
        return TaskAssignment(
            task_id=data["task_id"],
            group_id=data["group_id"],
            photo_id=data["photo_id"],
            prompt=data["prompt"],
            leased_until=datetime.fromisoformat(data["leased_until"]),
            photo_storage_path=data["photo_storage_path"],
            retry_count=int(data["retry_count"]),
            reclaimed=bool(data.get("reclaimed", False)),
        )

    def heartbeat(
        self,
        *,
        task_id: str,
        worker_id: str,
        extend_seconds: int | None = None,
    ) -> datetime:
        payload: dict[str, Any] = {"task_id": task_id, "worker_id": worker_id}
        if extend_seconds is not None:
            payload["extend_seconds"] = extend_seconds
        data = self._post("/api/worker/heartbeat", payload, task_id=task_id, worker_id=worker_id)
        return datetime.fromisoformat(data["leased_until"])

    def report_completed(
        self,
        *,
        task_id: str,
        worker_id: str,
        video_storage_path: str,
        external_operation_id: str | None = None,
    ) -> dict[str, Any]:
        return self._report(
            task_id=task_id,
            worker_id=worker_id,
            status=ReportOutcome.COMPLETED,
            video_storage_path=video_storage_path,
            external_operation_id=external_operation_id,
        )

    def report_failed(self, *, task_id: str, worker_id: str, error_message: str) -> dict[str, Any]:
        return self._report(
            task_id=task_id,
            worker_id=worker_id,
            status=ReportOutcome.FAILED,
            error_message=error_message,
        )

    def presign_download(self, *, storage_path: str) -> PresignedUrl:
        data = self._post(
            "/api/worker/presign",
            {"operation": "download", "storage_path": storage_path},
        )
        return _to_presigned_url(data)

    def presign_upload(self, *, task_id: str, file_extension: str = "mp4") -> PresignedUrl:
        data = self._post(
            "/api/worker/presign",
            {"operation": "upload", "task_id": task_id, "file_extension": file_extension},
            task_id=task_id,
        )
        return _to_presigned_url(data)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> WorkerApiClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _report(self, *, task_id: str, worker_id: str, **fields: Any) -> dict[str, Any]:
        payload = {"task_id": task_id, "worker_id": worker_id}
        payload.update({key: value for key, value in fields.items() if value is not None})
        return self._post("/api/worker/report", payload, task_id=task_id, worker_id=worker_id)

    def _post(
        self,
        path: str,
        payload: dict[str, Any],
        *,
        task_id: str = "",
        worker_id: str = "",
    ) -> Any:
        try:
            response = self._client.post(path, json=payload, headers=self._headers)
        except httpx.TimeoutException as error:
            raise WorkerApiError(f"Timeout calling {path}", status_code=0, retryable=True) from error
        except httpx.HTTPError as error:
            raise WorkerApiError(
                f"HTTP error calling {path}: {error}",
                status_code=0,
                retryable=True,
            ) from error

        body = _json_body(response)
        if response.is_success:
            return body.get("data")
        raise _error_from_response(
            response.status_code,
            body,
            task_id=task_id,
            worker_id=worker_id,
        )


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_from_response(
    status_code: int,
    body: dict[str, Any],
    *,
    task_id: str,
    worker_id: str,
) -> Exception:
    message = str(body.get("error") or f"HTTP {status_code}")
    code = body.get("code")
    error: QueueError | None = None
    if code == "task_not_found":
        error = TaskNotFoundError(task_id)
    elif code == "lease_mismatch":
        error = LeaseMismatchError(task_id, worker_id)
    elif code in {"invalid_payload", "validation_error"}:
        error = InvalidPayloadError(message)
    elif code == "state_conflict":
        error = TaskStateConflictError(message)
    if error is not None:
        return error
    logger.warning("Worker API call failed with HTTP %d: %s", status_code, message)
    return WorkerApiError(
        message,
        status_code=status_code,
        retryable=bool(body.get("retryable", False)) or status_code >= 500,
    )


def _to_presigned_url(data: dict[str, Any]) -> PresignedUrl:
    return PresignedUrl(
        url=data["url"],
        bucket=data["bucket"],
        storage_path=data["storage_path"],
        expires_at=datetime.fromisoformat(data["expires_at"]),
    )
