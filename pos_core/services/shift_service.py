from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pos_core.auth import ELEVATED_ROLES, assert_role
from pos_core.config import settings
from pos_core.errors import ManagerApprovalRequired, ShiftAlreadyClosed, ShiftHasUnfinishedOrders, ShiftNotFound
from pos_core.models import (
    Order,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Shift,
    ShiftFinancialSummary,
    TerminalCashSummary,
)
from pos_core.services import audit_service, event_service

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
ZERO = Decimal('0.00')
UNFINISHED_STATUSES = (OrderStatus.PENDING, OrderStatus.PREPARING)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _money(value) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class ShiftSummary:
    shift_id: int
    orders_served: int
    total_sales: Decimal
    sales_by_method: dict[PaymentMethod, Decimal] = field(default_factory=dict)

    @property
    def cash_sales(self) -> Decimal:
        return self.sales_by_method.get(PaymentMethod.CASH, ZERO)

    def as_dict(self) -> dict:
        return {
            'shift_id': self.shift_id,
            'orders_served': self.orders_served,
            'total_sales': str(self.total_sales),
            'cash_sales': str(self.cash_sales),
            'sales_by_method': {method.value: str(amount) for method, amount in self.sales_by_method.items()},
        }


@dataclass
class CloseShiftResult:
    shift_id: int
    expected_cash: Decimal
    counted_cash: Decimal
    variance: Decimal
    threshold: Decimal
    approval_required: bool
    manager_approval_staff_id: int | None
    summary: ShiftSummary

    def as_dict(self) -> dict:
        return {
            'shift_id': self.shift_id,
            'expected_cash': str(self.expected_cash),
            'counted_cash': str(self.counted_cash),
            'variance': str(self.variance),
            'threshold': str(self.threshold),
            'approval_required': self.approval_required,
            'manager_approval_staff_id': self.manager_approval_staff_id,
            'summary': self.summary.as_dict(),
        }


def _get_shift(db: Session, shift_id: int, *, for_update: bool = False) -> Shift:
    stmt = select(Shift).where(Shift.id == shift_id)
    if for_update:
        stmt = stmt.with_for_update()
    shift = db.execute(stmt).scalar_one_or_none()
    if not shift:
        raise ShiftNotFound(shift_id)
    return shift


def _served_payments_filter(shift_id: int):
    return (
        Order.shift_id == shift_id,
        Order.status == OrderStatus.SERVED,
        Payment.status == PaymentStatus.COMPLETED,
    )


def _summarize(db: Session, shift_id: int) -> ShiftSummary:
    orders_served = db.execute(
        select(func.count(Order.id)).where(Order.shift_id == shift_id, Order.status == OrderStatus.SERVED)
    ).scalar_one()

    rows = db.execute(
        select(Payment.method, func.coalesce(func.sum(Payment.amount), 0))
        .join(Order, Order.id == Payment.order_id)
        .where(*_served_payments_filter(shift_id))
        .group_by(Payment.method)
    ).all()

    sales_by_method = {method: ZERO for method in PaymentMethod}
    for method, amount in rows:
        sales_by_method[PaymentMethod(method)] = _money(amount)
    total_sales = _money(sum(sales_by_method.values(), ZERO))
    return ShiftSummary(
        shift_id=shift_id,
        orders_served=int(orders_served),
        total_sales=total_sales,
        sales_by_method=sales_by_method,
    )


def get_shift_summary(db: Session, shift_id: int) -> ShiftSummary:
    """Sales for a shift: served orders and their completed payments, by method. Read-only."""
    _get_shift(db, shift_id)
    return _summarize(db, shift_id)


def _terminal_cash(db: Session, shift: Shift) -> dict[str, tuple[Decimal, int]]:
    rows = db.execute(
        select(Order.terminal_id, func.coalesce(func.sum(Payment.amount), 0), func.count(Payment.id))
        .join(Order, Order.id == Payment.order_id)
        .where(*_served_payments_filter(shift.id), Payment.method == PaymentMethod.CASH)
        .group_by(Order.terminal_id)
    ).all()
    # Orders without a terminal of their own were rung up on the shift's terminal.
    breakdown = {shift.terminal_id: (ZERO, 0)}
    for terminal_id, amount, count in rows:
        key = terminal_id or shift.terminal_id
        cash_sales, cash_count = breakdown.get(key, (ZERO, 0))
        breakdown[key] = (cash_sales + _money(amount), cash_count + int(count))
    return breakdown


def close_shift(
    db: Session,
    *,
    shift_id: int,
    counted_cash: Decimal,
    closed_by_actor_id: int,
    manager_approval_actor_id: int | None = None,
) -> CloseShiftResult:
    """Close a shift and persist its reconciliation.

    Expected cash is the completed cash taken on served orders. When the
    counted amount is further from it than ``settings.cash_variance_threshold``
    the close is refused with ManagerApprovalRequired until it is resubmitted
    with an approving manager or admin. Nothing is written on any rejection.
    """
    assert_role(db, closed_by_actor_id, ELEVATED_ROLES)

    shift = _get_shift(db, shift_id, for_update=True)
    if shift.end_time is not None:
        raise ShiftAlreadyClosed(shift_id)

    unfinished = db.execute(
        select(func.count(Order.id)).where(Order.shift_id == shift.id, Order.status.in_(UNFINISHED_STATUSES))
    ).scalar_one()
    if unfinished:
        raise ShiftHasUnfinishedOrders(shift_id, int(unfinished))

    summary = _summarize(db, shift.id)
    counted_cash = _money(counted_cash)
    expected_cash = summary.cash_sales
    variance = counted_cash - expected_cash
    threshold = _money(settings.cash_variance_threshold)
    approval_required = abs(variance) > threshold

    if approval_required and manager_approval_actor_id is None:
        logger.warning(
            'Shift %s close needs manager approval: expected %s, counted %s, variance %s, threshold %s',
            shift.id,
            expected_cash,
            counted_cash,
            variance,
            threshold,
        )
        raise ManagerApprovalRequired(shift_id, variance, threshold)
    if manager_approval_actor_id is not None:
        assert_role(db, manager_approval_actor_id, ELEVATED_ROLES)

    approver_id = manager_approval_actor_id if approval_required else None

    shift.end_time = _now()
    shift.counted_cash = counted_cash
    shift.cash_variance = variance
    shift.closed_by_staff_id = closed_by_actor_id
    shift.manager_approval_staff_id = approver_id

    db.add(
        ShiftFinancialSummary(
            shift_id=shift.id,
            orders_served=summary.orders_served,
            total_sales=summary.total_sales,
            cash_sales=summary.sales_by_method[PaymentMethod.CASH],
            mtn_momo_sales=summary.sales_by_method[PaymentMethod.MTN_MOMO],
            airtel_money_sales=summary.sales_by_method[PaymentMethod.AIRTEL_MONEY],
            card_sales=summary.sales_by_method[PaymentMethod.CARD],
            expected_cash=expected_cash,
            counted_cash=counted_cash,
            cash_variance=variance,
            approval_required=approval_required,
        )
    )
    for terminal_id, (cash_sales, cash_count) in sorted(_terminal_cash(db, shift).items()):
        db.add(
            TerminalCashSummary(
                shift_id=shift.id,
                terminal_id=terminal_id,
                cash_sales=cash_sales,
                cash_payment_count=cash_count,
                expected_balance=cash_sales,
            )
        )
    db.flush()

    result = CloseShiftResult(
        shift_id=shift.id,
        expected_cash=expected_cash,
        counted_cash=counted_cash,
        variance=variance,
        threshold=threshold,
        approval_required=approval_required,
        manager_approval_staff_id=approver_id,
        summary=summary,
    )
    audit_service.log_audit(
        db,
        actor_staff_id=closed_by_actor_id,
        action=audit_service.SHIFT_CLOSE,
        entity_type='shift',
        entity_id=shift.id,
        previous_state={'end_time': None},
        new_state={
            'expected_cash': str(expected_cash),
            'counted_cash': str(counted_cash),
            'cash_variance': str(variance),
            'manager_approval_staff_id': approver_id,
        },
    )
    event_service.queue_event(
        db,
        event_service.SHIFT_CLOSED,
        {
            'shift_id': shift.id,
            'closed_by_staff_id': closed_by_actor_id,
            'expected_cash': str(expected_cash),
            'counted_cash': str(counted_cash),
            'cash_variance': str(variance),
            'approval_required': approval_required,
        },
    )
    logger.info(
        'Shift %s closed by staff %s: expected %s, counted %s, variance %s',
        shift.id,
        closed_by_actor_id,
        expected_cash,
        counted_cash,
        variance,
    )
    return result


def list_terminal_cash_summaries(db: Session, shift_id: int) -> list[TerminalCashSummary]:
    _get_shift(db, shift_id)
    return db.execute(
        select(TerminalCashSummary)
        .where(TerminalCashSummary.shift_id == shift_id)
        .order_by(TerminalCashSummary.terminal_id.asc())
    ).scalars().all()
