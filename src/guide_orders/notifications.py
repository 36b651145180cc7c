"""Outbound status-change events. Delivery is best-effort and never affects a committed transition."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaseStatusEvent:
    case_id: int
    case_number: str
    from_status: str | None
    to_status: str
    actor_role: str
    entry_type: str = "transition"
    correlation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class NotificationDispatcher(Protocol):
    def publish(self, event: CaseStatusEvent) -> None: ...


class LoggingNotificationDispatcher:
    """Default dispatcher: records the event in the application log."""

    def publish(self, event: CaseStatusEvent) -> None:
        logger.info(
            "Case status event case_id=%s %s -> %s by %s",
            event.case_id,
            event.from_status,
            event.to_status,
            event.actor_role,
        )


class BackgroundNotificationDispatcher:
    """Fire-and-forget wrapper: hands events to a worker thread."""

    def __init__(self, inner: NotificationDispatcher, max_workers: int = 2) -> None:
        self._inner = inner
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def publish(self, event: CaseStatusEvent) -> None:
        future = self._pool.submit(self._inner.publish, event)
        future.add_done_callback(lambda f: _log_failure(event, f.exception()))

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)


def _log_failure(event: CaseStatusEvent, exc: BaseException | None) -> None:
    if exc is not None:
        logger.error(
            "Notification dispatch failed for case_id=%s (%s -> %s)",
            event.case_id,
            event.from_status,
            event.to_status,
            exc_info=exc,
        )


def publish_safely(dispatcher: NotificationDispatcher | None, event: CaseStatusEvent) -> bool:
    """Publish event; log and swallow dispatcher errors. Returns True if handed off."""
    if dispatcher is None:
        return False
    try:
        dispatcher.publish(event)
    except Exception as exc:
        _log_failure(event, exc)
        return False
    return True
