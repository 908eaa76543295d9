"""HTTP surface: worker and admin routes over the queue service."""

from video_queue.api.app import create_app

__all__ = ["create_app"]
