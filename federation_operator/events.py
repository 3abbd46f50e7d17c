"""
Reconcile event stream (optional — graceful degradation if Redis is unavailable).

Events go to a per-object Redis Stream capped at 100 entries plus a global
pub/sub channel, for dashboards that follow federation progress live.
"""

import json as _json
import logging
from datetime import datetime, timezone

from .config import settings

logger = logging.getLogger("federation-events")

STREAM_MAXLEN = 100
CHANNEL = "federation:events"

_redis_client = None


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _get_redis():
    """Lazy-init Redis client. Returns None if unavailable."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    if not settings.REDIS_URL:
        return None
    try:
        import redis
        _redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        _redis_client.ping()
        logger.info(f"Redis connected: {settings.REDIS_URL}")
        return _redis_client
    except Exception as e:
        logger.warning(f"Redis unavailable (non-fatal): {e}")
        _redis_client = None
        return None


def stream_key(key: str) -> str:
    return f"federation:events:{key}"


def publish_event(key: str, event_type: str, message: str, cluster: str = ""):
    """Publish a reconcile event for an object key."""
    r = _get_redis()
    if not r:
        return
    entry = {
        "type": event_type,
        "message": message,
        "cluster": cluster,
        "timestamp": _now(),
        "key": key,
    }
    try:
        r.xadd(stream_key(key), entry, maxlen=STREAM_MAXLEN)
        r.publish(CHANNEL, _json.dumps(entry))
    except Exception as e:
        logger.debug(f"Redis publish failed (non-fatal): {e}")


def recent_events(key: str, count: int = 50) -> list[dict]:
    r = _get_redis()
    if not r:
        return []
    try:
        return [data for _, data in r.xrange(stream_key(key), count=count)]
    except Exception as e:
        logger.debug(f"Redis stream read failed: {e}")
        return []
