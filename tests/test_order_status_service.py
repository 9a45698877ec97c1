from __future__ import annotations

from factories import DbTestCase, make_order, make_shift, make_staff, make_table

from pos_core.errors import ErrorKind, InvalidTransition, OrderNotFound
from pos_core.models import AuditLog, Order, OrderStatus
from pos_core.services import event_service
from pos_core.services.order_status_service import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    allowed_next_statuses,
    is_transition_allowed,
    set_order_status,
)


class TransitionTableTests(DbTestCase):
    def test_terminal_statuses_are_served_and_cancelled(self) -> None:
        self.assertEqual(TERMINAL_STATUSES, frozenset({OrderStatus.SERVED, OrderStatus.CANCELLED}))

    def test_every_status_has_an_entry(self) -> None:
        self.assertEqual(set(ALLOWED_TRANSITIONS), set(OrderStatus))

    def test_kitchen_flow_edges(self) -> None:
        self.assertTrue(is_transition_allowed(OrderStatus.PENDING, OrderStatus.PREPARING))
        self.assertTrue(is_transition_allowed(OrderStatus.PREPARING, OrderStatus.READY))
        self.assertTrue(is_transition_allowed(OrderStatus.READY, OrderStatus.SERVED))
        self.assertFalse(is_transition_allowed(OrderStatus.PENDING, OrderStatus.READY))
        self.assertFalse(is_transition_allowed(OrderStatus.READY, OrderStatus.CANCELLED))
        self.assertEqual(allowed_next_statuses(OrderStatus.SERVED), [])

    def test_awaiting_payment_edges(self) -> None:
        self.assertTrue(is_transition_allowed(OrderStatus.READY, OrderStatus.AWAITING_PAYMENT))
        self.assertEqual(
            allowed_next_statuses(OrderStatus.AWAITING_PAYMENT),
            [OrderStatus.READY, OrderStatus.SERVED],
        )


class SetOrderStatusTests(DbTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.staff = make_staff(self.db)
        self.shift = make_shift(self.db, self.staff)

    def test_valid_transition_updates_status_and_actor(self) -> None:
        order = make_order(self.db, shift=self.shift, staff=self.staff)
        kitchen = make_staff(self.db, name='Kitchen')

        set_order_status(self.db, order_id=order.id, new_status=OrderStatus.PREPARING, actor_id=kitchen.id)
        self.db.commit()

        refreshed = self.db.get(Order, order.id)
        self.assertEqual(refreshed.status, OrderStatus.PREPARING)
        self.assertEqual(refreshed.updated_by_staff_id, kitchen.id)

        audit = self.db.query(AuditLog).one()
        self.assertEqual(audit.action, 'ORDER_STATUS')
        self.assertEqual(audit.previous_state, {'status': 'pending'})
        self.assertEqual(audit.new_state, {'status': 'preparing'})

        self.assertEqual(self.sink.types(), [event_service.ORDER_STATUS_CHANGED])
        payload = self.sink.events[0].payload
        self.assertEqual(payload['previous_status'], 'pending')
        self.assertEqual(payload['new_status'], 'preparing')
        self.assertEqual(payload['shift_id'], self.shift.id)

    def test_every_disallowed_pair_is_rejected_without_change(self) -> None:
        for current in OrderStatus:
            for attempted in OrderStatus:
                if attempted in ALLOWED_TRANSITIONS[current]:
                    continue
                with self.subTest(current=current, attempted=attempted):
                    order = make_order(self.db, shift=self.shift, staff=self.staff, status=current)
                    with self.assertRaises(InvalidTransition) as ctx:
                        set_order_status(self.db, order_id=order.id, new_status=attempted, actor_id=self.staff.id)
                    self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_STATE)
                    self.assertEqual(ctx.exception.current_status, current)
                    self.assertEqual(ctx.exception.attempted_status, attempted)
                    self.assertEqual(self.db.get(Order, order.id).status, current)
        self.assertEqual(self.db.query(AuditLog).count(), 0)

    def test_missing_order(self) -> None:
        with self.assertRaises(OrderNotFound) as ctx:
            set_order_status(self.db, order_id=999, new_status=OrderStatus.PREPARING, actor_id=self.staff.id)
        self.assertEqual(ctx.exception.to_dict()['order_id'], 999)

    def test_status_change_does_not_touch_table(self) -> None:
        table = make_table(self.db)
        order = make_order(self.db, shift=self.shift, staff=self.staff, table=table, status=OrderStatus.READY)

        set_order_status(self.db, order_id=order.id, new_status=OrderStatus.SERVED, actor_id=self.staff.id)
        self.db.commit()

        self.assertEqual(self.db.get(Order, order.id).status, OrderStatus.SERVED)
        self.assertEqual(table.status.value, 'occupied')

    def test_events_dropped_on_rollback(self) -> None:
        order = make_order(self.db, shift=self.shift, staff=self.staff)
        self.db.commit()

        set_order_status(self.db, order_id=order.id, new_status=OrderStatus.PREPARING, actor_id=self.staff.id)
        self.assertEqual(len(event_service.pending_events(self.db)), 1)
        self.db.rollback()

        self.assertEqual(self.sink.events, [])
        self.assertEqual(event_service.pending_events(self.db), [])
        self.assertEqual(self.db.get(Order, order.id).status, OrderStatus.PENDING)
