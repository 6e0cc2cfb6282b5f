# events.py
"""
In-process publish/subscribe.

The round engine publishes settlements; the economy, auto-play controller,
persistence and leaderboard each subscribe on their own instead of calling
each other directly.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List

from .utils import generate_unique_id

logger = logging.getLogger("crashxp.events")

# Topics
ROUND_SETTLED = "round.settled"
ECONOMY_CHANGED = "economy.changed"
NOTICE = "notice"

Handler = Callable[[Any], Any]


class NoticeLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    SOCIAL = "social"


@dataclass(frozen=True)
class Notice:
    """User-facing message; delivery is up to the presentation layer."""

    message: str
    level: NoticeLevel = NoticeLevel.INFO
    notice_id: str = field(default_factory=lambda: generate_unique_id(6))
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.notice_id,
            "message": self.message,
            "level": self.level.value,
            "created_at": self.created_at,
        }


class EventBus:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns an unsubscribe function."""
        self._handlers[topic].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[topic]:
                self._handlers[topic].remove(handler)

        return unsubscribe

    async def publish(self, topic: str, payload: Any) -> None:
        """
        Deliver to every handler in subscription order.
        A failing handler is logged and never stops the others.
        """
        for handler in list(self._handlers.get(topic, ())):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Handler {getattr(handler, '__qualname__', handler)} failed on {topic}")

    async def notify(self, message: str, level: NoticeLevel = NoticeLevel.INFO) -> Notice:
        notice = Notice(message=message, level=level)
        await self.publish(NOTICE, notice)
        return notice
