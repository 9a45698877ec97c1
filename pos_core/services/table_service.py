from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pos_core.errors import OrderNotFound, OrderNotTerminal, TableNotFound
from pos_core.models import Order, OrderStatus, OrderType, RestaurantTable, TableStatus
from pos_core.services import audit_service, event_service
from pos_core.services.order_status_service import TERMINAL_STATUSES

logger = logging.getLogger(__name__)

# awaiting_payment does not hold a table: the guests have left while an
# external gateway settles the bill.
OCCUPYING_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY})


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _occupying_orders_count(db: Session, *, table_id: int, exclude_order_id: int | None = None) -> int:
    stmt = select(func.count(Order.id)).where(
        Order.table_id == table_id,
        Order.order_type == OrderType.DINE_IN,
        Order.status.in_(list(OCCUPYING_STATUSES)),
    )
    if exclude_order_id is not None:
        stmt = stmt.where(Order.id != exclude_order_id)
    return db.execute(stmt).scalar_one()


def is_table_occupied(db: Session, table_id: int) -> bool:
    return _occupying_orders_count(db, table_id=table_id) > 0


def _get_table_for_update(db: Session, table_id: int) -> RestaurantTable:
    table = db.execute(
        select(RestaurantTable).where(RestaurantTable.id == table_id).with_for_update()
    ).scalar_one_or_none()
    if not table:
        raise TableNotFound(table_id)
    return table


def release_table_for_order(db: Session, *, order_id: int, actor_id: int | None = None) -> bool:
    """Mark the order's table available once the order is terminal.

    Returns True when the table row actually changed. Takeaway orders, tables
    still used by another live order, and already-available tables are no-ops.
    """
    order = db.execute(select(Order).where(Order.id == order_id)).scalar_one_or_none()
    if not order:
        raise OrderNotFound(order_id)
    if order.table_id is None:
        return False
    if order.status not in TERMINAL_STATUSES:
        raise OrderNotTerminal(order_id, order.status)

    table = _get_table_for_update(db, order.table_id)
    if _occupying_orders_count(db, table_id=table.id, exclude_order_id=order.id) > 0:
        logger.info('Table %s kept occupied: other live orders remain (released by order %s)', table.id, order.id)
        return False
    if table.status == TableStatus.AVAILABLE:
        return False

    table.status = TableStatus.AVAILABLE
    table.updated_at = _now()
    db.flush()

    audit_service.log_audit(
        db,
        actor_staff_id=actor_id,
        action=audit_service.TABLE_RELEASE,
        entity_type='table',
        entity_id=table.id,
        previous_state={'status': TableStatus.OCCUPIED.value},
        new_state={'status': TableStatus.AVAILABLE.value, 'order_id': order.id},
    )
    event_service.queue_event(
        db,
        event_service.TABLE_RELEASED,
        {'table_id': table.id, 'order_id': order.id, 'shift_id': order.shift_id, 'order_status': order.status.value},
    )
    logger.info('Table %s released by order %s', table.id, order.id)
    return True


def occupy_table_for_order(db: Session, *, order_id: int, actor_id: int | None = None) -> bool:
    """Mark a freshly created dine-in order's table occupied.

    Order creation lives outside this package; the order-creation service
    calls this in its own transaction right after inserting the order row.
    """
    order = db.execute(select(Order).where(Order.id == order_id)).scalar_one_or_none()
    if not order:
        raise OrderNotFound(order_id)
    if order.table_id is None or order.status not in OCCUPYING_STATUSES:
        return False

    table = _get_table_for_update(db, order.table_id)
    if table.status == TableStatus.OCCUPIED:
        return False

    table.status = TableStatus.OCCUPIED
    table.updated_at = _now()
    db.flush()

    audit_service.log_audit(
        db,
        actor_staff_id=actor_id,
        action=audit_service.TABLE_OCCUPY,
        entity_type='table',
        entity_id=table.id,
        previous_state={'status': TableStatus.AVAILABLE.value},
        new_state={'status': TableStatus.OCCUPIED.value, 'order_id': order.id},
    )
    event_service.queue_event(
        db,
        event_service.TABLE_OCCUPIED,
        {'table_id': table.id, 'order_id': order.id, 'shift_id': order.shift_id},
    )
    return True
