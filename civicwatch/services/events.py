import json
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from civicwatch.core.config import settings
from civicwatch.core.log import get_logger

logger = get_logger("civicwatch.events")

REPORTS_CHANNEL = "reports:events"
USER_CHANNEL_PREFIX = "user:"

# The client connects lazily on first publish
redis_client = redis.Redis(
    host=settings.REDIS_HOST,
    port=settings.REDIS_PORT,
    db=settings.REDIS_DB,
    password=settings.REDIS_PASSWORD,
    decode_responses=True,
)


async def publish_message(channel: str, message: Any) -> int:
    """Publish a JSON message on a Redis channel."""
    serialized_message = json.dumps(message)
    return await redis_client.publish(channel, serialized_message)


async def publish_report_event(
    event: str, report: Dict[str, Any], actor_id: Optional[str] = None, **data: Any
) -> bool:
    """
    Announce a report lifecycle event to subscribers and to the report owner.

    Returns False when events are disabled or Redis is unavailable; the
    caller's request is never failed by this.
    """
    if not settings.EVENTS_ENABLED:
        return False

    message = {
        "type": event,
        "data": {
            "report_id": report.get("id"),
            "title": report.get("title"),
            "status": report.get("status"),
            "user_id": report.get("user_id"),
            "actor_id": actor_id,
            **data,
        },
    }
    try:
        await publish_message(REPORTS_CHANNEL, message)
        if report.get("user_id"):
            await publish_message(f"{USER_CHANNEL_PREFIX}{report['user_id']}", message)
    except RedisError as e:
        logger.warning(f"Could not publish {event} for report {report.get('id')}: {e}")
        return False
    return True
