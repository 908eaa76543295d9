from __future__ import annotations

from fastapi import Request

from video_queue.queue.services import VideoQueueService


def get_service(request: Request) -> VideoQueueService:
    return request.app.state.service
