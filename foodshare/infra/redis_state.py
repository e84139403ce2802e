"""Redis relay for change events when several API workers share one database."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from uuid import uuid4

from redis import Redis

from foodshare.domain.models import ChangeEvent

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
REDIS_FANOUT_ENABLED = os.getenv("REDIS_FANOUT_ENABLED", "0").strip().lower() in {"1", "true", "yes", "on"}
CHANGES_CHANNEL = "foodshare:changes"

# Identifies events published by this process so the listener can skip them.
INSTANCE_ID = uuid4().hex


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(REDIS_URL, decode_responses=True)


def check_redis_ready() -> bool:
    try:
        return bool(get_redis().ping())
    except Exception:
        return False


def encode_relay_message(event: ChangeEvent, origin: str = INSTANCE_ID) -> str:
    return f"{origin}|{event.model_dump_json()}"


def decode_relay_message(raw: str) -> tuple[str, ChangeEvent]:
    origin, _, body = raw.partition("|")
    return origin, ChangeEvent.model_validate_json(body)


def publish_change(event: ChangeEvent) -> None:
    get_redis().publish(CHANGES_CHANNEL, encode_relay_message(event))
