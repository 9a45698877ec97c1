from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pos_core.config import settings
from pos_core.errors import (
    InvalidQuantity,
    OrderImmutable,
    OrderItemNotFound,
    OrderTotalBelowPaid,
    ProductInactive,
    ProductNotFound,
)
from pos_core.models import Order, OrderItem, Product
from pos_core.services import event_service
from pos_core.services.order_status_service import EDITABLE_STATUSES, get_order_for_update
from pos_core.services.payment_service import get_total_recorded

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _money(value) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def _editable_order(db: Session, order_id: int) -> Order:
    order = get_order_for_update(db, order_id)
    if order.status not in EDITABLE_STATUSES:
        raise OrderImmutable(order_id, order.status)
    return order


def _order_item(db: Session, *, order_id: int, item_id: int) -> OrderItem:
    item = db.execute(
        select(OrderItem).where(OrderItem.id == item_id, OrderItem.order_id == order_id)
    ).scalar_one_or_none()
    if not item:
        raise OrderItemNotFound(order_id, item_id)
    return item


def _active_product(db: Session, product_id: int) -> Product:
    product = db.execute(select(Product).where(Product.id == product_id)).scalar_one_or_none()
    if not product:
        raise ProductNotFound(product_id)
    if not product.active:
        raise ProductInactive(product_id)
    return product


def _check_quantity(quantity: int) -> None:
    if quantity < 1:
        raise InvalidQuantity(quantity)


def recalculate_order_totals(db: Session, order: Order) -> Order:
    # Always rebuilt from every line; never patched incrementally.
    db.flush()
    line_totals = db.execute(select(OrderItem.line_total).where(OrderItem.order_id == order.id)).scalars().all()
    subtotal = _money(sum((_money(value) for value in line_totals), Decimal('0')))
    tax = _money(subtotal * settings.tax_rate)
    order.subtotal = subtotal
    order.tax = tax
    order.total = subtotal + tax
    order.updated_at = _now()
    db.flush()
    return order


def _check_not_below_paid(db: Session, order: Order) -> None:
    # Payments are never rolled back by an item edit; the new total must still cover them.
    recorded = get_total_recorded(db, order.id)
    if _money(order.total) < recorded:
        logger.info(
            'Order %s: item change rejected, total %s below recorded payments %s', order.id, order.total, recorded
        )
        raise OrderTotalBelowPaid(order.id, _money(order.total), recorded)


def _queue_order_updated(db: Session, order: Order) -> None:
    event_service.queue_event(
        db,
        event_service.ORDER_UPDATED,
        {'order_id': order.id, 'shift_id': order.shift_id, 'status': order.status.value, 'total': str(order.total)},
    )


def list_items(db: Session, *, order_id: int) -> list[OrderItem]:
    return db.execute(
        select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.sort_order.asc(), OrderItem.id.asc())
    ).scalars().all()


def add_item(
    db: Session,
    *,
    order_id: int,
    product_id: int,
    quantity: int,
    size: str | None = None,
    modifier: str | None = None,
    notes: str | None = None,
) -> OrderItem:
    _check_quantity(quantity)
    order = _editable_order(db, order_id)
    product = _active_product(db, product_id)

    unit_price = _money(product.price)
    next_position = db.execute(
        select(func.coalesce(func.max(OrderItem.sort_order), -1)).where(OrderItem.order_id == order.id)
    ).scalar_one()
    item = OrderItem(
        order_id=order.id,
        product_id=product.id,
        product_name=product.name,
        unit_price=unit_price,
        quantity=quantity,
        line_total=_money(unit_price * quantity),
        size=size,
        modifier=modifier,
        notes=notes,
        sort_order=int(next_position) + 1,
    )
    db.add(item)
    recalculate_order_totals(db, order)
    _queue_order_updated(db, order)
    logger.info('Order %s: added %s x product %s, total now %s', order.id, quantity, product.id, order.total)
    return item


def update_item_quantity(db: Session, *, order_id: int, item_id: int, quantity: int) -> OrderItem:
    _check_quantity(quantity)
    order = _editable_order(db, order_id)
    item = _order_item(db, order_id=order.id, item_id=item_id)

    with db.begin_nested():
        item.quantity = quantity
        item.line_total = _money(item.unit_price * quantity)
        recalculate_order_totals(db, order)
        _check_not_below_paid(db, order)
    _queue_order_updated(db, order)
    return item


def remove_item(db: Session, *, order_id: int, item_id: int) -> Order:
    order = _editable_order(db, order_id)
    item = _order_item(db, order_id=order.id, item_id=item_id)

    with db.begin_nested():
        db.delete(item)
        recalculate_order_totals(db, order)
        _check_not_below_paid(db, order)
    _queue_order_updated(db, order)
    logger.info('Order %s: removed item %s, total now %s', order.id, item_id, order.total)
    return order
