from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    true,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer(), 'sqlite')
Money = Numeric(14, 2)


class Base(DeclarativeBase):
    pass


def _values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, values_callable=_values)


class StaffRole(str, Enum):
    ADMIN = 'admin'
    MANAGER = 'manager'
    CASHIER = 'cashier'
    WAITER = 'waiter'
    KITCHEN = 'kitchen'
    BAR = 'bar'


class OrderType(str, Enum):
    DINE_IN = 'dine_in'
    TAKEAWAY = 'takeaway'


class OrderStatus(str, Enum):
    PENDING = 'pending'
    PREPARING = 'preparing'
    READY = 'ready'
    AWAITING_PAYMENT = 'awaiting_payment'
    SERVED = 'served'
    CANCELLED = 'cancelled'


class PaymentMethod(str, Enum):
    CASH = 'cash'
    MTN_MOMO = 'mtn_momo'
    AIRTEL_MONEY = 'airtel_money'
    CARD = 'card'


class PaymentStatus(str, Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'


class TableStatus(str, Enum):
    AVAILABLE = 'available'
    OCCUPIED = 'occupied'


class Staff(Base):
    __tablename__ = 'staff'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[StaffRole] = mapped_column(_enum(StaffRole, 'staff_role'), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Product(Base):
    __tablename__ = 'products'
    __table_args__ = (CheckConstraint('price >= 0', name='products_price_non_negative_ck'),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class RestaurantTable(Base):
    __tablename__ = 'restaurant_tables'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    label: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default='1')
    status: Mapped[TableStatus] = mapped_column(
        _enum(TableStatus, 'table_status'), nullable=False, default=TableStatus.AVAILABLE, server_default='available'
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Shift(Base):
    __tablename__ = 'shifts'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    staff_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('staff.id'), nullable=False)
    terminal_id: Mapped[str] = mapped_column(String(64), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    counted_cash: Mapped[Decimal | None] = mapped_column(Money)
    cash_variance: Mapped[Decimal | None] = mapped_column(Money)
    closed_by_staff_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('staff.id'))
    manager_approval_staff_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('staff.id'))


class Order(Base):
    __tablename__ = 'orders'
    __table_args__ = (
        CheckConstraint(
            "(order_type = 'dine_in' AND table_id IS NOT NULL) OR (order_type = 'takeaway' AND table_id IS NULL)",
            name='orders_table_matches_type_ck',
        ),
        CheckConstraint('subtotal >= 0 AND tax >= 0 AND total >= 0', name='orders_totals_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(64), nullable=False)
    order_type: Mapped[OrderType] = mapped_column(_enum(OrderType, 'order_type'), nullable=False)
    table_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('restaurant_tables.id'))
    shift_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('shifts.id'), nullable=False, index=True)
    terminal_id: Mapped[str | None] = mapped_column(String(64))
    status: Mapped[OrderStatus] = mapped_column(
        _enum(OrderStatus, 'order_status'), nullable=False, default=OrderStatus.PENDING, server_default='pending'
    )
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'), server_default='0')
    tax: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'), server_default='0')
    total: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'), server_default='0')
    created_by_staff_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('staff.id'), nullable=False)
    updated_by_staff_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('staff.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class OrderItem(Base):
    __tablename__ = 'order_items'
    __table_args__ = (CheckConstraint('quantity >= 1', name='order_items_quantity_positive_ck'),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Money, nullable=False)
    size: Mapped[str | None] = mapped_column(Text)
    modifier: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Payment(Base):
    __tablename__ = 'payments'
    __table_args__ = (CheckConstraint('amount > 0', name='payments_amount_positive_ck'),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('orders.id'), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(_enum(PaymentMethod, 'payment_method'), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, 'payment_status'),
        nullable=False,
        default=PaymentStatus.COMPLETED,
        server_default='completed',
    )
    reference: Mapped[str | None] = mapped_column(Text)
    created_by_staff_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('staff.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ShiftFinancialSummary(Base):
    __tablename__ = 'shift_financial_summaries'
    __table_args__ = (UniqueConstraint('shift_id', name='shift_financial_summaries_shift_uniq'),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    shift_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('shifts.id'), nullable=False)
    orders_served: Mapped[int] = mapped_column(Integer, nullable=False)
    total_sales: Mapped[Decimal] = mapped_column(Money, nullable=False)
    cash_sales: Mapped[Decimal] = mapped_column(Money, nullable=False)
    mtn_momo_sales: Mapped[Decimal] = mapped_column(Money, nullable=False)
    airtel_money_sales: Mapped[Decimal] = mapped_column(Money, nullable=False)
    card_sales: Mapped[Decimal] = mapped_column(Money, nullable=False)
    expected_cash: Mapped[Decimal] = mapped_column(Money, nullable=False)
    counted_cash: Mapped[Decimal] = mapped_column(Money, nullable=False)
    cash_variance: Mapped[Decimal] = mapped_column(Money, nullable=False)
    approval_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TerminalCashSummary(Base):
    __tablename__ = 'terminal_cash_summaries'
    __table_args__ = (UniqueConstraint('shift_id', 'terminal_id', name='terminal_cash_summaries_shift_terminal_uniq'),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    shift_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('shifts.id'), nullable=False)
    terminal_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cash_sales: Mapped[Decimal] = mapped_column(Money, nullable=False)
    cash_payment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expected_balance: Mapped[Decimal] = mapped_column(Money, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    actor_staff_id: Mapped[int | None] = mapped_column(BigInteger)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[str | None] = mapped_column(Text)
    previous_state: Mapped[dict | None] = mapped_column(JSON)
    new_state: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class IdempotencyRecord(Base):
    __tablename__ = 'idempotency_records'
    __table_args__ = (UniqueConstraint('key', name='idempotency_records_key_uniq'),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False)
    operation: Mapped[str] = mapped_column(String(64), nullable=False)
    response: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
