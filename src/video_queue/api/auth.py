"""Credential checks for the worker and admin tiers."""

from __future__ import annotations

import hmac

from fastapi import Depends, HTTPException, Request
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from video_queue.config import Settings

worker_scheme = APIKeyHeader(name="Authorization", auto_error=False)
admin_scheme = HTTPBearer(auto_error=False)

_WORKER_SCHEMES = {"worker", "bearer"}


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _matches(supplied: str, expected: str) -> bool:
    return bool(expected) and hmac.compare_digest(supplied.encode(), expected.encode())


async def require_worker(
    request: Request,
    authorization: str | None = Depends(worker_scheme),
) -> None:
    """Accept ``Worker <key>`` (or ``Bearer <key>``) with the worker shared secret."""

    if not authorization:
        raise HTTPException(status_code=401, detail="Missing worker credential.")
    scheme, _, credential = authorization.strip().partition(" ")
    if scheme.lower() not in _WORKER_SCHEMES or not credential.strip():
        raise HTTPException(status_code=401, detail="Malformed worker credential.")
    if not _matches(credential.strip(), _settings(request).api.worker_api_key):
        raise HTTPException(status_code=401, detail="Invalid worker credential.")


async def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(admin_scheme),
) -> None:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer admin token.")
    if not _matches(credentials.credentials, _settings(request).api.admin_api_token):
        raise HTTPException(status_code=401, detail="Invalid admin token.")
