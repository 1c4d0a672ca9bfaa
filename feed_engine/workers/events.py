"""
Post lifecycle events consumed from the content service.

Wire format (post-events topic):

    {"type": "post.created", "payload": {"postId", "userId", "publishedAt"}}
    {"type": "post.deleted", "payload": {"postId"}}

Messages are parsed into a closed set of variants; the dispatcher is the only
place that knows which fan-out operation each variant triggers.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Union

from feed_engine.services.fanout import FanOutWriter
from feed_engine.timeutil import to_naive_utc

logger = logging.getLogger(__name__)


class MalformedEventError(ValueError):
    pass


@dataclass(frozen=True)
class PostCreated:
    post_id: str
    user_id: str
    published_at: datetime


@dataclass(frozen=True)
class PostDeleted:
    post_id: str


PostEvent = Union[PostCreated, PostDeleted]


def _field(payload: dict[str, Any], camel: str, snake: str) -> Any:
    value = payload.get(camel, payload.get(snake))
    if not value:
        raise MalformedEventError(f"missing {camel}")
    return value


def _published_at(raw: Any) -> datetime:
    """ISO-8601 string or epoch milliseconds, as naive UTC."""
    try:
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return to_naive_utc(datetime.fromtimestamp(raw / 1000, timezone.utc))
        return to_naive_utc(datetime.fromisoformat(str(raw).replace("Z", "+00:00")))
    except (ValueError, OverflowError, OSError) as exc:
        raise MalformedEventError(f"bad publishedAt: {raw!r}") from exc


def parse_event(message: dict[str, Any]) -> PostEvent:
    if not isinstance(message, dict):
        raise MalformedEventError("event is not an object")
    event_type = message.get("type")
    payload = message.get("payload") or {}

    if event_type == "post.created":
        published_at = _published_at(_field(payload, "publishedAt", "published_at"))
        return PostCreated(
            post_id=str(_field(payload, "postId", "post_id")),
            user_id=str(_field(payload, "userId", "user_id")),
            published_at=published_at,
        )
    if event_type == "post.deleted":
        return PostDeleted(post_id=str(_field(payload, "postId", "post_id")))
    raise MalformedEventError(f"unknown event type {event_type!r}")


class EventDispatcher:
    def __init__(self, fanout: FanOutWriter) -> None:
        self._fanout = fanout

    async def dispatch(self, event: PostEvent) -> int:
        """Returns rows written (created) or removed (deleted)."""
        if isinstance(event, PostCreated):
            logger.info("Fanning out post %s from %s", event.post_id, event.user_id)
            return await self._fanout.fan_out_to_followers(
                event.user_id, event.post_id, event.published_at
            )
        if isinstance(event, PostDeleted):
            logger.info("Removing post %s from all feeds", event.post_id)
            return await self._fanout.remove_from_all_feeds(event.post_id)
        raise TypeError(f"unsupported event {event!r}")

    async def handle_message(self, message: dict[str, Any]) -> int:
        """Parse and dispatch. Malformed messages are logged and skipped."""
        try:
            event = parse_event(message)
        except MalformedEventError as exc:
            logger.warning("Skipping malformed post event (%s): %s", exc, message)
            return 0
        return await self.dispatch(event)
