from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_core.errors import InvalidTransition, OrderNotFound
from pos_core.models import Order, OrderStatus
from pos_core.services import audit_service, event_service

logger = logging.getLogger(__name__)

# Authoritative transition table. The awaiting_payment edges cover orders handed
# to an asynchronous payment gateway: the gateway path parks a ready order there
# and either returns it to ready or lets checkout serve it.
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.SERVED, OrderStatus.AWAITING_PAYMENT}),
    OrderStatus.AWAITING_PAYMENT: frozenset({OrderStatus.SERVED, OrderStatus.READY}),
    OrderStatus.SERVED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)
EDITABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PREPARING})
CHECKOUT_STATUSES = frozenset({OrderStatus.READY, OrderStatus.AWAITING_PAYMENT})


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def is_transition_allowed(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


def allowed_next_statuses(current: OrderStatus) -> list[OrderStatus]:
    return sorted(ALLOWED_TRANSITIONS.get(current, frozenset()), key=lambda s: s.value)


def get_order_for_update(db: Session, order_id: int) -> Order:
    """Load an order and lock its row for the rest of the transaction."""
    order = db.execute(select(Order).where(Order.id == order_id).with_for_update()).scalar_one_or_none()
    if not order:
        raise OrderNotFound(order_id)
    return order


def set_order_status(db: Session, *, order_id: int, new_status: OrderStatus, actor_id: int) -> Order:
    new_status = OrderStatus(new_status)
    order = get_order_for_update(db, order_id)
    previous = order.status

    if not is_transition_allowed(previous, new_status):
        raise InvalidTransition(order_id, previous, new_status)

    order.status = new_status
    order.updated_by_staff_id = actor_id
    order.updated_at = _now()
    db.flush()

    audit_service.log_audit(
        db,
        actor_staff_id=actor_id,
        action=audit_service.ORDER_STATUS,
        entity_type='order',
        entity_id=order.id,
        previous_state={'status': previous.value},
        new_state={'status': new_status.value},
    )
    event_service.queue_event(
        db,
        event_service.ORDER_STATUS_CHANGED,
        {
            'order_id': order.id,
            'shift_id': order.shift_id,
            'table_id': order.table_id,
            'previous_status': previous.value,
            'new_status': new_status.value,
        },
    )
    logger.info('Order %s status %s -> %s by staff %s', order.id, previous.value, new_status.value, actor_id)
    return order
