"""Message visibility, push notifications and local inbox reconciliation."""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Callable, Iterable, Mapping

logger = logging.getLogger(__name__)

MessageCallback = Callable[[dict], None]


def is_visible_to(message: Mapping, user_id: str, role: str | None) -> bool:
    """Return whether ``user_id`` (with ``role``) may see ``message``.

    Direct messages are visible to their sender and recipient. Announcements
    are visible to everyone when ``target_roles`` is empty, otherwise only to
    the listed roles (and their sender).
    """

    if message["sender_id"] == user_id or message.get("recipient_id") == user_id:
        return True
    if not message.get("is_announcement"):
        return False
    targets = message.get("target_roles") or []
    return not targets or role in targets


class Subscription:
    def __init__(self, hub: "MessageHub", key: int) -> None:
        self._hub = hub
        self._key = key
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._hub._remove(self._key)
            self.active = False


class MessageHub:
    """In-process change feed for newly created messages."""

    def __init__(self) -> None:
        self._subscribers: dict[int, tuple[int, str | None, MessageCallback]] = {}
        self._keys = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, user_id: str, role: str | None, on_message: MessageCallback) -> Subscription:
        with self._lock:
            key = next(self._keys)
            self._subscribers[key] = (user_id, role, on_message)
        return Subscription(self, key)

    def _remove(self, key: int) -> None:
        with self._lock:
            self._subscribers.pop(key, None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, message: Mapping) -> int:
        """Deliver ``message`` to every subscriber allowed to see it.

        Returns the number of callbacks invoked. A failing callback is logged
        and does not stop delivery to the others.
        """

        with self._lock:
            subscribers = list(self._subscribers.values())
        delivered = 0
        for user_id, role, callback in subscribers:
            if not is_visible_to(message, user_id, role):
                continue
            try:
                callback(dict(message))
            except Exception:
                logger.exception("Message subscriber for user %s failed", user_id)
                continue
            delivered += 1
        return delivered


class Inbox:
    """A user's local copy of their messages, deduplicated by message id.

    A message the user sends is added locally straight away and then echoed
    back by the subscription; the echo is dropped instead of duplicated.
    """

    def __init__(self, messages: Iterable[dict] = ()) -> None:
        self._messages: list[dict] = []
        self._ids: set = set()
        for message in messages:
            self._add(message)

    def _add(self, message: dict) -> bool:
        if message["id"] in self._ids:
            return False
        self._ids.add(message["id"])
        self._messages.append(message)
        return True

    def add_local(self, message: dict) -> bool:
        return self._add(message)

    def receive(self, message: dict) -> bool:
        return self._add(message)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def messages(self) -> list[dict]:
        return list(self._messages)

    def unread_count(self, user_id: str) -> int:
        return sum(
            1
            for message in self._messages
            if message["sender_id"] != user_id and not message.get("read_at")
        )
