"""
Real-time publishing of request events over Redis pub/sub.

Approver consoles subscribe to ``{prefix}:{block}-{floor}``; students to
``{prefix}:student-{id}``.  Publishing happens after commit and is
fire-and-forget from the workflow's point of view.
"""

from __future__ import annotations

import json
from typing import Any

import redis

from permit_config.schema import RealtimeConfig
from permit_kernel.logging_config import get_logger
from permit_kernel.utils.hashing import canonicalize_json

logger = get_logger("services.realtime")

DEFAULT_REDIS_MAX_CONNECTIONS = 20
DEFAULT_REDIS_CONNECT_TIMEOUT_SECONDS = 2.0
DEFAULT_REDIS_SOCKET_TIMEOUT_SECONDS = 2.0
DEFAULT_REDIS_HEALTH_CHECK_SECONDS = 30


class RedisRealtimePublisher:
    def __init__(self, client: Any, channel_prefix: str = "permits"):
        self._client = client
        self._prefix = channel_prefix

    def channel_for(self, scope_key: str) -> str:
        return f"{self._prefix}:{scope_key}"

    def publish(self, scope_key: str, event_name: str, payload: dict[str, Any]) -> None:
        channel = self.channel_for(scope_key)
        message = canonicalize_json({"event": event_name, "payload": payload})
        receivers = self._client.publish(channel, message)
        logger.debug(
            "realtime_event_published",
            extra={"channel": channel, "event": event_name, "receivers": receivers},
        )


class NullRealtimePublisher:
    """Used when no Redis URL is configured."""

    def publish(self, scope_key: str, event_name: str, payload: dict[str, Any]) -> None:
        logger.debug(
            "realtime_event_dropped",
            extra={"scope_key": scope_key, "event": event_name},
        )


def decode_event(message: bytes | str) -> dict[str, Any]:
    """Inverse of the publisher's wire format, for subscribers."""
    if isinstance(message, bytes):
        message = message.decode("utf-8")
    return json.loads(message)


def build_realtime_publisher(
    config: RealtimeConfig,
) -> RedisRealtimePublisher | NullRealtimePublisher:
    if not config.enabled:
        logger.info("realtime_disabled")
        return NullRealtimePublisher()

    pool = redis.ConnectionPool.from_url(
        config.redis_url,
        max_connections=DEFAULT_REDIS_MAX_CONNECTIONS,
        socket_connect_timeout=DEFAULT_REDIS_CONNECT_TIMEOUT_SECONDS,
        socket_timeout=DEFAULT_REDIS_SOCKET_TIMEOUT_SECONDS,
        health_check_interval=DEFAULT_REDIS_HEALTH_CHECK_SECONDS,
        retry_on_timeout=True,
    )
    return RedisRealtimePublisher(
        redis.Redis(connection_pool=pool), channel_prefix=config.channel_prefix,
    )
