from __future__ import annotations

from decimal import Decimal
from unittest import mock

from factories import DbTestCase, make_order, make_shift, make_staff
from sqlalchemy.exc import OperationalError

from pos_core.models import AuditLog, Order, OrderStatus, PaymentMethod
from pos_core.services import audit_service, event_service
from pos_core.services.order_status_service import set_order_status
from pos_core.services.payment_service import list_payments, record_payment


class _ExplodingSink:
    def publish(self, event) -> None:
        raise RuntimeError('transport down')


class AuditSinkTests(DbTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.staff = make_staff(self.db)
        self.shift = make_shift(self.db, self.staff)

    def test_audit_row_written_in_caller_transaction(self) -> None:
        audit_service.log_audit(
            self.db,
            actor_staff_id=self.staff.id,
            action=audit_service.TABLE_RELEASE,
            entity_type='table',
            entity_id=3,
            previous_state={'status': 'occupied'},
            new_state={'status': 'available'},
        )
        self.db.commit()

        row = self.db.query(AuditLog).one()
        self.assertEqual(row.entity_id, '3')
        self.assertEqual(row.new_state, {'status': 'available'})

    def test_audit_failure_does_not_block_payment(self) -> None:
        order = make_order(self.db, shift=self.shift, staff=self.staff, total='2000')

        with mock.patch.object(audit_service, 'AuditLog', side_effect=OperationalError('INSERT', {}, Exception('disk full'))):
            with self.assertLogs('pos_core.services.audit_service', level='ERROR'):
                record_payment(
                    self.db, order_id=order.id, amount=Decimal('2000'), method=PaymentMethod.CASH, actor_id=self.staff.id
                )
        self.db.commit()

        self.assertEqual(len(list_payments(self.db, order_id=order.id)), 1)
        self.assertEqual(self.db.query(AuditLog).count(), 0)


class EventSinkTests(DbTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.staff = make_staff(self.db)
        self.shift = make_shift(self.db, self.staff)

    def test_sink_failure_is_logged_and_swallowed(self) -> None:
        order = make_order(self.db, shift=self.shift, staff=self.staff)
        self.db.commit()
        event_service.set_event_sink(_ExplodingSink())

        set_order_status(self.db, order_id=order.id, new_status=OrderStatus.PREPARING, actor_id=self.staff.id)
        with self.assertLogs('pos_core.services.event_service', level='ERROR'):
            self.db.commit()

        self.assertEqual(self.db.get(Order, order.id).status, OrderStatus.PREPARING)

    def test_savepoint_release_does_not_publish_early(self) -> None:
        order = make_order(self.db, shift=self.shift, staff=self.staff)
        set_order_status(self.db, order_id=order.id, new_status=OrderStatus.PREPARING, actor_id=self.staff.id)

        # The audit write inside set_order_status already released a savepoint.
        self.assertEqual(self.sink.events, [])
        self.db.commit()
        self.assertEqual(self.sink.types(), [event_service.ORDER_STATUS_CHANGED])

    def test_event_serializes_with_timestamp(self) -> None:
        domain_event = event_service.DomainEvent(type='X', payload={'order_id': 1})
        data = domain_event.as_dict()
        self.assertEqual(data['type'], 'X')
        self.assertEqual(data['payload']['order_id'], 1)
        self.assertIn('T', data['payload']['at'])

    def test_default_sink_logs(self) -> None:
        with self.assertLogs('pos_core.services.event_service', level='INFO') as logs:
            event_service.LoggingEventSink().publish(event_service.DomainEvent(type='PING', payload={}))
        self.assertIn('PING', logs.output[0])
