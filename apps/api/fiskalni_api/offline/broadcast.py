from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("fiskalni.offline.broadcast")

DEFAULT_CHANNEL_NAME = "fiskalni-racun-sync"

ENTITY_MESSAGE_KINDS = ("receipt", "device")
ENTITY_MESSAGE_ACTIONS = {"create": "created", "update": "updated", "delete": "deleted"}

MESSAGE_TYPES = frozenset(
    {f"{kind}-{action}" for kind in ENTITY_MESSAGE_KINDS for action in ENTITY_MESSAGE_ACTIONS.values()}
    | {"sync-completed", "auth-changed", "settings-changed"},
)


@dataclass(frozen=True)
class BroadcastMessage:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.payload}


Subscriber = Callable[[BroadcastMessage], None]


def entity_message(entity_type: str, operation: str, entity_id: str) -> BroadcastMessage | None:
    """Build the ``<kind>-<action>`` message for an entity change, if that kind is broadcast."""
    action = ENTITY_MESSAGE_ACTIONS.get(operation)
    if entity_type not in ENTITY_MESSAGE_KINDS or action is None:
        return None
    return BroadcastMessage(type=f"{entity_type}-{action}", payload={f"{entity_type}Id": entity_id})


class BroadcastChannel:
    """Same-process fan-out of sync notifications between local consumers.

    Delivery is at-most-once: a subscriber that raises is logged and skipped,
    the remaining subscribers still receive the message.
    """

    def __init__(self, name: str = DEFAULT_CHANNEL_NAME) -> None:
        self.name = name
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def post(self, message: BroadcastMessage) -> int:
        if message.type not in MESSAGE_TYPES:
            raise ValueError(f"Unknown broadcast message type: {message.type}")
        delivered = 0
        for callback in list(self._subscribers):
            try:
                callback(message)
            except Exception:
                logger.exception("broadcast.subscriber.failed", extra={"route": self.name})
            else:
                delivered += 1
        return delivered
