from __future__ import annotations

from decimal import Decimal

from factories import DbTestCase, add_payment_row, make_order, make_shift, make_staff, make_table

from pos_core.errors import InvalidTransition, OrderNotFound, OrderNotFullyPaid, OrderNotReadyForCheckout
from pos_core.models import AuditLog, Order, OrderStatus, PaymentMethod, PaymentStatus, TableStatus
from pos_core.services import event_service
from pos_core.services.checkout_service import checkout_order
from pos_core.services.order_service import cancel_order
from pos_core.services.payment_service import record_payment


class CheckoutTests(DbTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.cashier = make_staff(self.db)
        self.shift = make_shift(self.db, self.cashier)
        self.table = make_table(self.db)

    def _ready_order(self, total: str = '12000', **kwargs) -> Order:
        return make_order(
            self.db,
            shift=self.shift,
            staff=self.cashier,
            table=kwargs.pop('table', self.table),
            status=kwargs.pop('status', OrderStatus.READY),
            total=total,
        )

    def _pay(self, order: Order, amount: str) -> None:
        record_payment(
            self.db, order_id=order.id, amount=Decimal(amount), method=PaymentMethod.CASH, actor_id=self.cashier.id
        )

    def test_checkout_serves_order_and_releases_table_atomically(self) -> None:
        order = self._ready_order()
        self._pay(order, '12000')
        self.db.commit()
        self.sink.clear()

        checkout_order(self.db, order_id=order.id, actor_id=self.cashier.id)
        self.db.commit()

        self.assertEqual(self.db.get(Order, order.id).status, OrderStatus.SERVED)
        self.assertEqual(self.table.status, TableStatus.AVAILABLE)
        self.assertEqual(self.sink.types(), [event_service.ORDER_STATUS_CHANGED, event_service.TABLE_RELEASED])
        actions = [row.action for row in self.db.query(AuditLog).order_by(AuditLog.id).all()]
        self.assertEqual(actions[-2:], ['ORDER_STATUS', 'TABLE_RELEASE'])

    def test_second_checkout_is_rejected_without_changes(self) -> None:
        order = self._ready_order()
        self._pay(order, '12000')
        checkout_order(self.db, order_id=order.id, actor_id=self.cashier.id)
        self.db.commit()
        audit_count = self.db.query(AuditLog).count()

        with self.assertRaises(OrderNotReadyForCheckout) as ctx:
            checkout_order(self.db, order_id=order.id, actor_id=self.cashier.id)

        self.assertEqual(ctx.exception.status, OrderStatus.SERVED)
        self.assertEqual(self.db.query(AuditLog).count(), audit_count)

    def test_partial_payment_blocks_checkout(self) -> None:
        order = self._ready_order()
        self._pay(order, '11999.99')

        with self.assertRaises(OrderNotFullyPaid) as ctx:
            checkout_order(self.db, order_id=order.id, actor_id=self.cashier.id)

        self.assertEqual(ctx.exception.total_paid, Decimal('11999.99'))
        self.assertEqual(ctx.exception.order_total, Decimal('12000.00'))
        self.assertEqual(order.status, OrderStatus.READY)
        self.assertEqual(self.table.status, TableStatus.OCCUPIED)

    def test_pending_payments_do_not_count_towards_checkout(self) -> None:
        order = self._ready_order(total='5000')
        add_payment_row(
            self.db, order, '5000', staff=self.cashier, method=PaymentMethod.MTN_MOMO, status=PaymentStatus.PENDING
        )
        with self.assertRaises(OrderNotFullyPaid):
            checkout_order(self.db, order_id=order.id, actor_id=self.cashier.id)

    def test_kitchen_statuses_cannot_check_out(self) -> None:
        for status in (OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.CANCELLED):
            with self.subTest(status=status):
                order = self._ready_order(total='0', status=status, table=None)
                with self.assertRaises(OrderNotReadyForCheckout):
                    checkout_order(self.db, order_id=order.id, actor_id=self.cashier.id)

    def test_awaiting_payment_checkout(self) -> None:
        order = self._ready_order(total='2500', status=OrderStatus.AWAITING_PAYMENT, table=None)
        self._pay(order, '2500')
        checkout_order(self.db, order_id=order.id, actor_id=self.cashier.id)
        self.assertEqual(order.status, OrderStatus.SERVED)

    def test_missing_order(self) -> None:
        with self.assertRaises(OrderNotFound):
            checkout_order(self.db, order_id=31337, actor_id=self.cashier.id)

    def test_table_stays_occupied_while_another_order_uses_it(self) -> None:
        first = self._ready_order(total='1000')
        self._ready_order(total='2000', status=OrderStatus.PREPARING)
        self._pay(first, '1000')

        checkout_order(self.db, order_id=first.id, actor_id=self.cashier.id)
        self.db.commit()

        self.assertEqual(self.table.status, TableStatus.OCCUPIED)
        self.assertNotIn(event_service.TABLE_RELEASED, self.sink.types())


class CancelOrderTests(DbTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.waiter = make_staff(self.db)
        self.shift = make_shift(self.db, self.waiter)
        self.table = make_table(self.db)

    def test_cancel_pending_order_frees_table(self) -> None:
        order = make_order(self.db, shift=self.shift, staff=self.waiter, table=self.table)

        cancel_order(self.db, order_id=order.id, actor_id=self.waiter.id)
        self.db.commit()

        self.assertEqual(self.db.get(Order, order.id).status, OrderStatus.CANCELLED)
        self.assertEqual(self.table.status, TableStatus.AVAILABLE)
        self.assertEqual(
            self.sink.types(),
            [event_service.ORDER_STATUS_CHANGED, event_service.ORDER_CANCELLED, event_service.TABLE_RELEASED],
        )

    def test_ready_order_cannot_be_cancelled(self) -> None:
        order = make_order(self.db, shift=self.shift, staff=self.waiter, table=self.table, status=OrderStatus.READY)
        with self.assertRaises(InvalidTransition):
            cancel_order(self.db, order_id=order.id, actor_id=self.waiter.id)
        self.assertEqual(self.table.status, TableStatus.OCCUPIED)
