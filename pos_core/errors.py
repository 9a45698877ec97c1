"""Typed domain errors.

Every error carries a ``kind`` that callers switch on (the HTTP layer maps it to a
status code) and a stable ``code``. ``context()`` returns the identifiers and
amounts needed to explain a rejection without going back to the database.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = 'not_found'
    INVALID_STATE = 'invalid_state'
    INVARIANT_VIOLATION = 'invariant_violation'
    APPROVAL_REQUIRED = 'approval_required'
    FORBIDDEN = 'forbidden'


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple, set, frozenset)):
        return sorted(_jsonable(v) for v in value)
    return value


class PosError(Exception):
    kind: ErrorKind = ErrorKind.INVALID_STATE
    code: str = 'POS_ERROR'

    def context(self) -> dict:
        return {}

    @property
    def recoverable(self) -> bool:
        return self.kind == ErrorKind.APPROVAL_REQUIRED

    def to_dict(self) -> dict:
        payload = {'kind': self.kind.value, 'code': self.code, 'message': str(self)}
        payload.update({key: _jsonable(value) for key, value in self.context().items()})
        return payload


# Not found


class OrderNotFound(PosError):
    kind = ErrorKind.NOT_FOUND
    code = 'ORDER_NOT_FOUND'

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f'Order not found: {order_id}')

    def context(self) -> dict:
        return {'order_id': self.order_id}


class OrderItemNotFound(PosError):
    kind = ErrorKind.NOT_FOUND
    code = 'ORDER_ITEM_NOT_FOUND'

    def __init__(self, order_id: int, item_id: int):
        self.order_id = order_id
        self.item_id = item_id
        super().__init__(f'Order item {item_id} not found on order {order_id}')

    def context(self) -> dict:
        return {'order_id': self.order_id, 'item_id': self.item_id}


class ProductNotFound(PosError):
    kind = ErrorKind.NOT_FOUND
    code = 'PRODUCT_NOT_FOUND'

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f'Product not found: {product_id}')

    def context(self) -> dict:
        return {'product_id': self.product_id}


class ShiftNotFound(PosError):
    kind = ErrorKind.NOT_FOUND
    code = 'SHIFT_NOT_FOUND'

    def __init__(self, shift_id: int):
        self.shift_id = shift_id
        super().__init__(f'Shift not found: {shift_id}')

    def context(self) -> dict:
        return {'shift_id': self.shift_id}


class StaffNotFound(PosError):
    kind = ErrorKind.NOT_FOUND
    code = 'STAFF_NOT_FOUND'

    def __init__(self, staff_id: int):
        self.staff_id = staff_id
        super().__init__(f'Staff not found: {staff_id}')

    def context(self) -> dict:
        return {'staff_id': self.staff_id}


class TableNotFound(PosError):
    kind = ErrorKind.NOT_FOUND
    code = 'TABLE_NOT_FOUND'

    def __init__(self, table_id: int):
        self.table_id = table_id
        super().__init__(f'Table not found: {table_id}')

    def context(self) -> dict:
        return {'table_id': self.table_id}


# Invalid state


class InvalidTransition(PosError):
    kind = ErrorKind.INVALID_STATE
    code = 'INVALID_ORDER_STATUS_TRANSITION'

    def __init__(self, order_id: int, current_status, attempted_status):
        self.order_id = order_id
        self.current_status = current_status
        self.attempted_status = attempted_status
        super().__init__(
            f'Invalid order status transition: {_jsonable(current_status)} -> {_jsonable(attempted_status)} '
            f'(order: {order_id})'
        )

    def context(self) -> dict:
        return {
            'order_id': self.order_id,
            'current_status': self.current_status,
            'attempted_status': self.attempted_status,
        }


class OrderImmutable(PosError):
    kind = ErrorKind.INVALID_STATE
    code = 'ORDER_IMMUTABLE'

    def __init__(self, order_id: int, status):
        self.order_id = order_id
        self.status = status
        super().__init__(f'Order is {_jsonable(status)}; items cannot be modified: {order_id}')

    def context(self) -> dict:
        return {'order_id': self.order_id, 'status': self.status}


class OrderCancelled(PosError):
    kind = ErrorKind.INVALID_STATE
    code = 'ORDER_CANCELLED'

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f'Order is cancelled; payments cannot be recorded: {order_id}')

    def context(self) -> dict:
        return {'order_id': self.order_id}


class OrderNotTerminal(PosError):
    kind = ErrorKind.INVALID_STATE
    code = 'ORDER_NOT_TERMINAL'

    def __init__(self, order_id: int, status):
        self.order_id = order_id
        self.status = status
        super().__init__(
            f'Order is {_jsonable(status)}; table can only be released when order is served or cancelled: {order_id}'
        )

    def context(self) -> dict:
        return {'order_id': self.order_id, 'status': self.status}


class OrderNotReadyForCheckout(PosError):
    kind = ErrorKind.INVALID_STATE
    code = 'ORDER_NOT_READY_FOR_CHECKOUT'

    def __init__(self, order_id: int, status):
        self.order_id = order_id
        self.status = status
        super().__init__(
            f'Order is {_jsonable(status)}; only ready or awaiting_payment orders can be checked out: {order_id}'
        )

    def context(self) -> dict:
        return {'order_id': self.order_id, 'status': self.status}


class ProductInactive(PosError):
    kind = ErrorKind.INVALID_STATE
    code = 'PRODUCT_INACTIVE'

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f'Product is inactive: {product_id}')

    def context(self) -> dict:
        return {'product_id': self.product_id}


class ShiftAlreadyClosed(PosError):
    kind = ErrorKind.INVALID_STATE
    code = 'SHIFT_ALREADY_CLOSED'

    def __init__(self, shift_id: int):
        self.shift_id = shift_id
        super().__init__(f'Shift already closed: {shift_id}')

    def context(self) -> dict:
        return {'shift_id': self.shift_id}


class ShiftHasUnfinishedOrders(PosError):
    kind = ErrorKind.INVALID_STATE
    code = 'SHIFT_HAS_UNFINISHED_ORDERS'

    def __init__(self, shift_id: int, pending_count: int):
        self.shift_id = shift_id
        self.pending_count = pending_count
        super().__init__(
            f'Cannot close shift {shift_id}: {pending_count} order(s) still pending or preparing. '
            'Complete or cancel them first.'
        )

    def context(self) -> dict:
        return {'shift_id': self.shift_id, 'pending_count': self.pending_count}


# Invariant violations


class PaymentExceedsTotal(PosError):
    kind = ErrorKind.INVARIANT_VIOLATION
    code = 'PAYMENT_EXCEEDS_ORDER_TOTAL'

    def __init__(self, order_id: int, order_total: Decimal, current_total: Decimal, attempted_amount: Decimal):
        self.order_id = order_id
        self.order_total = order_total
        self.current_total = current_total
        self.attempted_amount = attempted_amount
        super().__init__(
            f'Payment would exceed order total: order {order_id} total {order_total}, '
            f'current payments {current_total}, attempted {attempted_amount}'
        )

    def context(self) -> dict:
        return {
            'order_id': self.order_id,
            'order_total': self.order_total,
            'current_total': self.current_total,
            'attempted_amount': self.attempted_amount,
        }


class OrderNotFullyPaid(PosError):
    kind = ErrorKind.INVARIANT_VIOLATION
    code = 'ORDER_NOT_FULLY_PAID'

    def __init__(self, order_id: int, order_total: Decimal, total_paid: Decimal):
        self.order_id = order_id
        self.order_total = order_total
        self.total_paid = total_paid
        super().__init__(f'Order not fully paid: {order_id} total {order_total}, paid {total_paid}')

    def context(self) -> dict:
        return {'order_id': self.order_id, 'order_total': self.order_total, 'total_paid': self.total_paid}


class OrderTotalBelowPaid(PosError):
    kind = ErrorKind.INVARIANT_VIOLATION
    code = 'ORDER_TOTAL_BELOW_PAID'

    def __init__(self, order_id: int, new_total: Decimal, recorded_total: Decimal):
        self.order_id = order_id
        self.new_total = new_total
        self.recorded_total = recorded_total
        super().__init__(
            f'Item change would drop order {order_id} total to {new_total}, '
            f'below payments already recorded ({recorded_total})'
        )

    def context(self) -> dict:
        return {'order_id': self.order_id, 'new_total': self.new_total, 'recorded_total': self.recorded_total}


class InvalidQuantity(PosError):
    kind = ErrorKind.INVARIANT_VIOLATION
    code = 'INVALID_QUANTITY'

    def __init__(self, quantity: int):
        self.quantity = quantity
        super().__init__(f'Quantity must be >= 1, got: {quantity}')

    def context(self) -> dict:
        return {'quantity': self.quantity}


class InvalidAmount(PosError):
    kind = ErrorKind.INVARIANT_VIOLATION
    code = 'PAYMENT_AMOUNT_INVALID'

    def __init__(self, amount: Decimal):
        self.amount = amount
        super().__init__(f'Payment amount must be > 0, got: {amount}')

    def context(self) -> dict:
        return {'amount': self.amount}


# Policy escalation


class ManagerApprovalRequired(PosError):
    kind = ErrorKind.APPROVAL_REQUIRED
    code = 'MANAGER_APPROVAL_REQUIRED'

    def __init__(self, shift_id: int, variance: Decimal, threshold: Decimal):
        self.shift_id = shift_id
        self.variance = variance
        self.threshold = threshold
        super().__init__(
            f'Cash variance {variance} exceeds threshold {threshold} for shift {shift_id}; '
            'resubmit with a manager approval'
        )

    def context(self) -> dict:
        return {'shift_id': self.shift_id, 'variance': self.variance, 'threshold': self.threshold}


# Authorization


class UnauthorizedRole(PosError):
    kind = ErrorKind.FORBIDDEN
    code = 'UNAUTHORIZED_ROLE'

    def __init__(self, staff_id: int, staff_role, required_roles):
        self.staff_id = staff_id
        self.staff_role = staff_role
        self.required_roles = required_roles
        super().__init__(
            f'Staff {staff_id} with role {_jsonable(staff_role)} is not authorized. '
            f"Required: {', '.join(_jsonable(required_roles))}"
        )

    def context(self) -> dict:
        return {'staff_id': self.staff_id, 'staff_role': self.staff_role, 'required_roles': self.required_roles}
