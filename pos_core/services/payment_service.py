from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pos_core.errors import (
    InvalidAmount,
    OrderCancelled,
    OrderNotReadyForCheckout,
    PaymentExceedsTotal,
)
from pos_core.models import Order, OrderStatus, Payment, PaymentMethod, PaymentStatus
from pos_core.services import audit_service, event_service
from pos_core.services.order_status_service import CHECKOUT_STATUSES, get_order_for_update

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


def _money(value) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def _sum_payments(db: Session, order_id: int, *, completed_only: bool) -> Decimal:
    stmt = select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.order_id == order_id)
    if completed_only:
        stmt = stmt.where(Payment.status == PaymentStatus.COMPLETED)
    return _money(db.execute(stmt).scalar_one())


def get_total_paid(db: Session, order_id: int) -> Decimal:
    """Sum of completed payments; pending and failed ones do not count as paid."""
    return _sum_payments(db, order_id, completed_only=True)


def get_total_recorded(db: Session, order_id: int) -> Decimal:
    """Sum of every payment row regardless of status. This is what the cap applies to."""
    return _sum_payments(db, order_id, completed_only=False)


def is_fully_paid(db: Session, order_id: int) -> bool:
    order = db.execute(select(Order).where(Order.id == order_id)).scalar_one_or_none()
    if not order or order.status == OrderStatus.CANCELLED:
        return False
    return get_total_paid(db, order_id) >= _money(order.total)


def list_payments(db: Session, *, order_id: int) -> list[Payment]:
    return db.execute(
        select(Payment).where(Payment.order_id == order_id).order_by(Payment.created_at.asc(), Payment.id.asc())
    ).scalars().all()


def record_payment(
    db: Session,
    *,
    order_id: int,
    amount: Decimal,
    method: PaymentMethod,
    actor_id: int,
    reference: str | None = None,
    auto_checkout: bool = False,
) -> Payment:
    """Append a completed payment to the order's ledger.

    The order row is locked before the running sum is read, so concurrent
    payments for the same order serialize on the cap check. Payments are never
    updated or deleted; corrections are new rows or external reversals.

    With ``auto_checkout`` the order must already be ready or awaiting_payment,
    and it is checked out in the same transaction once fully paid.
    """
    amount = Decimal(str(amount))
    if not amount.is_finite():
        raise InvalidAmount(amount)
    # Checked after rounding to cents: a sub-cent amount would store as zero.
    amount = _money(amount)
    if amount <= 0:
        raise InvalidAmount(amount)
    method = PaymentMethod(method)

    order = get_order_for_update(db, order_id)
    if order.status == OrderStatus.CANCELLED:
        raise OrderCancelled(order_id)
    if auto_checkout and order.status not in CHECKOUT_STATUSES:
        raise OrderNotReadyForCheckout(order_id, order.status)

    order_total = _money(order.total)
    current_total = get_total_recorded(db, order_id)
    if current_total + amount > order_total:
        logger.info(
            'Payment rejected for order %s: total %s, recorded %s, attempted %s',
            order_id,
            order_total,
            current_total,
            amount,
        )
        raise PaymentExceedsTotal(order_id, order_total, current_total, amount)

    payment = Payment(
        order_id=order.id,
        amount=amount,
        method=method,
        status=PaymentStatus.COMPLETED,
        reference=reference,
        created_by_staff_id=actor_id,
    )
    db.add(payment)
    db.flush()

    audit_service.log_audit(
        db,
        actor_staff_id=actor_id,
        action=audit_service.PAYMENT,
        entity_type='payment',
        entity_id=payment.id,
        previous_state={'order_id': order.id, 'recorded_total': str(current_total)},
        new_state={
            'order_id': order.id,
            'amount': str(amount),
            'method': method.value,
            'status': PaymentStatus.COMPLETED.value,
            'recorded_total': str(current_total + amount),
        },
    )
    event_service.queue_event(
        db,
        event_service.PAYMENT_COMPLETED,
        {
            'order_id': order.id,
            'shift_id': order.shift_id,
            'payment_id': payment.id,
            'amount': str(amount),
            'method': method.value,
            'order_total': str(order_total),
        },
    )
    logger.info('Payment %s recorded: order %s %s %s', payment.id, order.id, method.value, amount)

    if auto_checkout and is_fully_paid(db, order.id):
        from pos_core.services.checkout_service import checkout_order

        checkout_order(db, order_id=order.id, actor_id=actor_id)

    return payment


def record_order_payment(
    db: Session,
    *,
    order_id: int,
    amount: Decimal,
    method: PaymentMethod,
    actor_id: int,
    reference: str | None = None,
) -> Payment:
    """Payment path for orders at the till: records, then checks out once fully paid."""
    return record_payment(
        db,
        order_id=order_id,
        amount=amount,
        method=method,
        actor_id=actor_id,
        reference=reference,
        auto_checkout=True,
    )
