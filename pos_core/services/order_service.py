from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from pos_core.models import Order, OrderStatus
from pos_core.services import audit_service, event_service
from pos_core.services.order_status_service import set_order_status
from pos_core.services.table_service import release_table_for_order

logger = logging.getLogger(__name__)


def cancel_order(db: Session, *, order_id: int, actor_id: int) -> Order:
    """Cancel a pending or preparing order and free its table.

    Orders past the kitchen (ready and beyond) go through checkout instead;
    the state machine rejects them here with InvalidTransition.
    """
    order = set_order_status(db, order_id=order_id, new_status=OrderStatus.CANCELLED, actor_id=actor_id)

    audit_service.log_audit(
        db,
        actor_staff_id=actor_id,
        action=audit_service.ORDER_CANCEL,
        entity_type='order',
        entity_id=order.id,
        previous_state=None,
        new_state={'status': OrderStatus.CANCELLED.value, 'total': str(order.total)},
    )
    event_service.queue_event(
        db,
        event_service.ORDER_CANCELLED,
        {'order_id': order.id, 'shift_id': order.shift_id, 'table_id': order.table_id},
    )

    released = release_table_for_order(db, order_id=order.id, actor_id=actor_id)
    logger.info('Order %s cancelled by staff %s (table released: %s)', order.id, actor_id, released)
    return order
