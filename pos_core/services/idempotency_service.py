"""Replay-safe execution of mutating operations.

Clients that may retry (offline queues, flaky terminals) send a request key.
The first execution stores its JSON result under that key; repeats within the
TTL get the stored result back without running the operation again.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pos_core.config import settings
from pos_core.models import IdempotencyRecord
from pos_core.services import event_service

logger = logging.getLogger(__name__)

ADD_ITEM = 'add_item'
ORDER_STATUS = 'order_status'
ORDER_CANCEL = 'order_cancel'
PAYMENT = 'payment'
CHECKOUT = 'checkout'
SHIFT_CLOSE = 'shift_close'


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def is_cacheable_key(key: str | None) -> bool:
    return bool(key) and len(key) <= settings.idempotency_max_key_length


def _live_record(db: Session, key: str) -> IdempotencyRecord | None:
    return db.execute(
        select(IdempotencyRecord).where(IdempotencyRecord.key == key, IdempotencyRecord.expires_at > _now())
    ).scalar_one_or_none()


def get_or_set_idempotent(db: Session, *, key: str | None, operation: str, fn: Callable[[], Any]) -> Any:
    """Return the stored result for ``key`` or run ``fn`` and store what it returns.

    ``fn`` must return something JSON-compatible. Empty or over-long keys skip
    the store entirely. ``fn`` and the record insert share one savepoint: if a
    concurrent request stored the same key first, this run's writes are rolled
    back and the winner's result is returned instead.
    """
    if not is_cacheable_key(key):
        return fn()

    existing = _live_record(db, key)
    if existing:
        logger.info('Idempotent replay: key=%s operation=%s', key, existing.operation)
        return existing.response

    db.execute(delete(IdempotencyRecord).where(IdempotencyRecord.key == key))

    event_mark = len(event_service.pending_events(db))
    try:
        with db.begin_nested():
            result = fn()
            db.add(
                IdempotencyRecord(
                    key=key,
                    operation=operation,
                    response=result,
                    expires_at=_now() + timedelta(hours=settings.idempotency_ttl_hours),
                )
            )
            db.flush()
    except IntegrityError:
        winner = _live_record(db, key)
        if winner is None:
            raise
        event_service.discard_events_since(db, event_mark)
        logger.info('Idempotency key %s stored concurrently; returning stored result', key)
        return winner.response
    return result


def idempotent(operation: str):
    """Decorator form: the wrapped function gains an ``idempotency_key`` keyword.

    The wrapped function must take the session as its first argument.
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(db: Session, *args, idempotency_key: str | None = None, **kwargs):
            return get_or_set_idempotent(
                db,
                key=idempotency_key,
                operation=operation,
                fn=lambda: fn(db, *args, **kwargs),
            )

        return wrapper

    return decorator


def purge_expired(db: Session) -> int:
    result = db.execute(delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= _now()))
    db.flush()
    purged = result.rowcount or 0
    if purged:
        logger.info('Purged %d expired idempotency record(s)', purged)
    return purged
