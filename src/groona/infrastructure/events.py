from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import redis

from ..config import get_settings


logger = logging.getLogger(__name__)


class _RedisPublisher:
    def __init__(self, url: str) -> None:
        self._url = url
        self._client: Optional[redis.Redis] = None
        self._connect()

    def _connect(self) -> None:
        try:
            self._client = redis.Redis.from_url(self._url, socket_timeout=0.5)
            self._client.ping()
        except redis.RedisError:
            logger.warning("Redis unavailable at %s; events disabled until reconnect", self._url)
            self._client = None

    def publish(self, channel: str, payload: Dict[str, Any]) -> None:
        if not self._client:
            self._connect()
        if not self._client:
            return
        try:
            self._client.publish(channel, json.dumps(payload, default=str))
        except redis.RedisError:
            self._client = None
            raise


_publisher: Optional[_RedisPublisher] = None


def _get_publisher() -> Optional[_RedisPublisher]:
    global _publisher
    if _publisher is not None:
        return _publisher
    url = get_settings().redis_url
    if not url:
        return None
    _publisher = _RedisPublisher(url)
    return _publisher


def publish_event(event_type: str, payload: Dict[str, Any]) -> None:
    """Fan out a domain event on ``groona.events.<type>`` when Redis is configured."""

    publisher = _get_publisher()
    if not publisher:
        return
    publisher.publish(f"groona.events.{event_type}", payload)
