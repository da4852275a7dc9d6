"""Fire-and-forget lifecycle notifications.

The orchestrator calls `emit_lifecycle_notification` after a transition has
been committed. Delivery (e-mail, chat, webhooks) is someone else's problem:
sinks are plain callables registered at startup. A failing sink is logged and
never undoes or fails the transition that triggered it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable

logger = logging.getLogger("marketplace.notifications")


@dataclass(frozen=True)
class LifecycleNotification:
    event: str
    entity_type: str
    entity_id: str
    recipients: tuple[str, ...] = ()
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


NotificationSink = Callable[[LifecycleNotification], None]

_SINKS: list[NotificationSink] = []
_SINKS_LOCK = Lock()


def log_sink(notification: LifecycleNotification) -> None:
    logger.info(
        "lifecycle_notification",
        extra={
            "notification_event": notification.event,
            "entity_type": notification.entity_type,
            "entity_id": notification.entity_id,
            "recipients": list(notification.recipients),
        },
    )


def register_sink(sink: NotificationSink) -> None:
    with _SINKS_LOCK:
        if sink not in _SINKS:
            _SINKS.append(sink)


def unregister_sink(sink: NotificationSink) -> None:
    with _SINKS_LOCK:
        if sink in _SINKS:
            _SINKS.remove(sink)


def registered_sinks() -> list[NotificationSink]:
    with _SINKS_LOCK:
        return list(_SINKS)


def emit_lifecycle_notification(
    event: str,
    *,
    entity_type: str,
    entity_id: str,
    recipients: list[str] | tuple[str, ...] = (),
    payload: dict[str, Any] | None = None,
) -> LifecycleNotification:
    notification = LifecycleNotification(
        event=event,
        entity_type=entity_type,
        entity_id=str(entity_id),
        recipients=tuple(str(r) for r in recipients if r),
        payload=dict(payload or {}),
    )
    for sink in registered_sinks():
        try:
            sink(notification)
        except Exception:
            logger.exception(
                "notification_sink_failed",
                extra={
                    "notification_event": event,
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                    "sink": getattr(sink, "__name__", repr(sink)),
                },
            )
    return notification


register_sink(log_sink)
