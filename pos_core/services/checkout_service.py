from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from pos_core.errors import OrderNotFullyPaid, OrderNotReadyForCheckout
from pos_core.models import Order, OrderStatus
from pos_core.services.order_status_service import CHECKOUT_STATUSES, get_order_for_update, set_order_status
from pos_core.services.payment_service import _money, get_total_paid
from pos_core.services.table_service import release_table_for_order

logger = logging.getLogger(__name__)


def checkout_order(db: Session, *, order_id: int, actor_id: int) -> Order:
    """Serve a fully paid order and free its table in one transaction.

    A second checkout of the same order fails with OrderNotReadyForCheckout
    because the order is already served.
    """
    order = get_order_for_update(db, order_id)
    if order.status not in CHECKOUT_STATUSES:
        raise OrderNotReadyForCheckout(order_id, order.status)

    total_paid = get_total_paid(db, order.id)
    order_total = _money(order.total)
    if total_paid < order_total:
        raise OrderNotFullyPaid(order_id, order_total, total_paid)

    set_order_status(db, order_id=order.id, new_status=OrderStatus.SERVED, actor_id=actor_id)
    released = release_table_for_order(db, order_id=order.id, actor_id=actor_id)
    logger.info('Order %s checked out (paid %s, table released: %s)', order.id, total_paid, released)
    return order
