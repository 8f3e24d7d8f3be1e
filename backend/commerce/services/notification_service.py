# Overview: Best-effort publish/subscribe seam for outlet and customer notifications.

"""
Notification channel.

publish(channel, event) hands an event to every subscriber registered on the
current app. Delivery is fire-and-forget: a subscriber that raises is logged
and skipped, and publish itself never raises, so a lost notification can
never undo the business change that produced it. Callers publish only after
their transaction has committed.

Channels:
- outlet:<user_id>  seller-facing events (low stock, new orders, payments)
- user:<user_id>    buyer-facing events (order status, credit status)

The realtime relay (websocket fan-out) subscribes here; it is not part of
this package.
"""

from __future__ import annotations

from typing import Callable

from flask import current_app

from ..time_utils import utcnow, to_utc_z

Subscriber = Callable[[str, dict], None]

_EXT_KEY = "commerce.notification_subscribers"


def outlet_channel(outlet_id: int) -> str:
    return f"outlet:{outlet_id}"


def user_channel(user_id: int) -> str:
    return f"user:{user_id}"


def _subscribers() -> list[Subscriber]:
    return current_app.extensions.setdefault(_EXT_KEY, [])


def subscribe(callback: Subscriber) -> Subscriber:
    _subscribers().append(callback)
    return callback


def unsubscribe(callback: Subscriber) -> None:
    subs = _subscribers()
    if callback in subs:
        subs.remove(callback)


def publish(channel: str, event_type: str, **data) -> int:
    """
    Publish an event. Returns the number of subscribers that accepted it.
    """
    event = {"type": event_type, "channel": channel, "sent_at": to_utc_z(utcnow()), **data}
    current_app.logger.debug("notify %s %s", channel, event_type)

    delivered = 0
    for callback in list(_subscribers()):
        try:
            callback(channel, event)
            delivered += 1
        except Exception:
            current_app.logger.exception(
                "Notification delivery failed (channel=%s, type=%s)", channel, event_type
            )
    return delivered
