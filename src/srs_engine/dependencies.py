from __future__ import annotations

from functools import lru_cache

from fastapi import Header

from .clock import SystemClock
from .config import settings
from .errors import InvalidInputError
from .scheduler import Scheduler
from .store import create_store


@lru_cache(maxsize=1)
def _default_scheduler() -> Scheduler:
    return Scheduler(create_store(settings), settings.scheduler_config(), SystemClock())


def get_scheduler() -> Scheduler:
    """FastAPI dependency returning the process-wide scheduler.

    テストでは app.dependency_overrides[get_scheduler] でインメモリ構成へ差し替える。
    """

    return _default_scheduler()


def get_user_id(x_user_id: str = Header(default="", alias="X-User-Id")) -> str:
    """Caller identity from the ``X-User-Id`` header (authentication happens upstream)."""

    user_id = x_user_id.strip()
    if not user_id:
        raise InvalidInputError("X-User-Id header is required")
    return user_id
