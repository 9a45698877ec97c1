"""Best-effort domain events.

Services queue events on the session; they are handed to the registered sink
only after the surrounding transaction commits and are discarded on rollback.
A sink that raises is logged and ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

ORDER_STATUS_CHANGED = 'ORDER_STATUS_CHANGED'
ORDER_CANCELLED = 'ORDER_CANCELLED'
ORDER_UPDATED = 'ORDER_UPDATED'
PAYMENT_COMPLETED = 'PAYMENT_COMPLETED'
TABLE_RELEASED = 'TABLE_RELEASED'
TABLE_OCCUPIED = 'TABLE_OCCUPIED'
SHIFT_CLOSED = 'SHIFT_CLOSED'

_PENDING_KEY = 'pos_core.pending_events'


@dataclass(frozen=True)
class DomainEvent:
    type: str
    payload: dict
    at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def as_dict(self) -> dict:
        return {'type': self.type, 'payload': {**self.payload, 'at': self.at.isoformat()}}


class EventSink(Protocol):
    def publish(self, event: DomainEvent) -> None: ...


class LoggingEventSink:
    def publish(self, event: DomainEvent) -> None:
        logger.info('event %s %s', event.type, event.payload)


class InMemoryEventSink:
    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.type for e in self.events]

    def clear(self) -> None:
        self.events.clear()


_sink: EventSink = LoggingEventSink()


def set_event_sink(sink: EventSink) -> EventSink:
    global _sink
    previous = _sink
    _sink = sink
    return previous


def queue_event(db: Session, event_type: str, payload: dict) -> DomainEvent:
    domain_event = DomainEvent(type=event_type, payload=payload)
    db.info.setdefault(_PENDING_KEY, []).append(domain_event)
    return domain_event


def pending_events(db: Session) -> list[DomainEvent]:
    return list(db.info.get(_PENDING_KEY, []))


def discard_events_since(db: Session, mark: int) -> int:
    """Forget events queued after ``mark`` (a prior ``len(pending_events(db))``)."""
    queued = db.info.get(_PENDING_KEY, [])
    dropped = len(queued) - mark
    if dropped > 0:
        del queued[mark:]
    return max(dropped, 0)


def _deliver(events: list[DomainEvent]) -> None:
    sink = _sink
    for domain_event in events:
        try:
            sink.publish(domain_event)
        except Exception:
            logger.exception('Event delivery failed: %s', domain_event.type)


@event.listens_for(Session, 'after_commit')
def _flush_events_after_commit(session: Session) -> None:
    # Savepoint releases also fire after_commit; only the outermost commit publishes.
    if session.in_nested_transaction():
        return
    events = session.info.pop(_PENDING_KEY, [])
    if events:
        _deliver(events)


@event.listens_for(Session, 'after_transaction_end')
def _drop_uncommitted_events(session: Session, transaction) -> None:
    if transaction.parent is not None:
        return
    dropped = session.info.pop(_PENDING_KEY, [])
    if dropped:
        logger.info('Dropped %d event(s) from a transaction that did not commit', len(dropped))
