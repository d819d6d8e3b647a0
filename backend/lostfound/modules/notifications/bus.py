"""Outward events of the match resolution protocol.

Two layers:

* a per-user in-memory pub/sub feeding the SSE stream
  (``/notifications/stream``), not suitable for multi-process deployments;
* ``EventEmitter``, the notifier the protocol components are given.
  ``InAppNotifier`` additionally stores a ``Notification`` row per
  recipient and pushes it onto the SSE queue.
"""
from __future__ import annotations

from collections import defaultdict
from queue import Full, Queue
from threading import Lock
from typing import Any, Callable, Dict, List, Protocol

from sqlalchemy.exc import SQLAlchemyError

from ...clock import isoformat
from ...extensions import db
from ...logging_config import get_logger
from ...models.notification import Notification

logger = get_logger(__name__)

_subs: dict[int, List[Queue]] = {}
_lock = Lock()


def subscribe(user_id: int) -> Queue:
    q: Queue = Queue(maxsize=100)
    with _lock:
        _subs.setdefault(user_id, []).append(q)
    return q


def unsubscribe(user_id: int, q: Queue) -> None:
    with _lock:
        arr = _subs.get(user_id)
        if not arr:
            return
        if q in arr:
            arr.remove(q)
        if not arr:
            _subs.pop(user_id, None)


def publish(user_id: int, event: Dict[str, Any]) -> int:
    """Push ``event`` to every open stream of ``user_id``; returns deliveries."""
    with _lock:
        arr = list(_subs.get(user_id, []))
    delivered = 0
    for q in arr:
        try:
            q.put_nowait(event)
            delivered += 1
        except Full:
            logger.warning("sse_queue_full", user_id=user_id)
    return delivered


Handler = Callable[[str, Dict[str, Any]], None]


class Notifier(Protocol):
    def emit(self, event: str, payload: Dict[str, Any]) -> None: ...


class EventEmitter:
    """Synchronous emitter. ``on("*", handler)`` receives every event."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def on(self, event: str, handler: Handler) -> Handler:
        self._handlers[event].append(handler)
        return handler

    def off(self, event: str, handler: Handler) -> None:
        if handler in self._handlers.get(event, []):
            self._handlers[event].remove(handler)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        # Events are emitted after the transition committed; a failing
        # listener must not surface as a failure of the operation.
        for handler in [*self._handlers.get(event, []), *self._handlers.get("*", [])]:
            try:
                handler(event, payload)
            except Exception:
                logger.exception("event_handler_failed", event_name=event, handler=getattr(handler, "__name__", repr(handler)))


_TITLES = {
    "match.created": ("New match", "A possible match was found for your report."),
    "match.handover_confirmed": ("Handover confirmed", "The other party confirmed the handover. Please confirm on your side."),
    "match.resolved": ("Item returned", "Both parties confirmed the handover. The match is resolved."),
    "match.dismissed": ("Match dismissed", "The match was dismissed."),
    "match.expired": ("Handover window expired", "The 48-hour handover window has expired. Match cancelled."),
}


def notification_to_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "event": n.event,
        "matchId": n.match_id,
        "title": n.title,
        "message": n.body,
        "payload": n.payload,
        "read": n.read_at is not None,
        "createdAt": isoformat(n.created_at),
        "readAt": isoformat(n.read_at),
    }


class InAppNotifier(EventEmitter):
    """Stores in-app notifications for the recipients listed in the payload."""

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        recipients = sorted({int(u) for u in payload.get("recipients") or [] if u is not None})
        if recipients and event in _TITLES:
            self._store(event, payload, recipients)
        super().emit(event, payload)

    def _store(self, event: str, payload: Dict[str, Any], recipients: list[int]) -> None:
        title, body = _TITLES[event]
        details = {k: v for k, v in payload.items() if k != "recipients"}
        rows = [
            Notification(
                user_id=uid,
                match_id=payload.get("matchId"),
                event=event,
                title=title,
                body=body,
                payload=details,
            )
            for uid in recipients
        ]
        try:
            db.session.add_all(rows)
            db.session.commit()
        except SQLAlchemyError:
            # The transition itself is already committed
            db.session.rollback()
            logger.exception("notification_store_failed", event_name=event, match_id=payload.get("matchId"))
            return
        for n in rows:
            publish(int(n.user_id), {"type": "notification", "notification": notification_to_dict(n)})
