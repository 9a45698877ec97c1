from __future__ import annotations

import os
import tempfile
import threading
import unittest
from decimal import Decimal

from factories import make_engine, make_order, make_shift, make_staff
from sqlalchemy.orm import Session

from pos_core.errors import PaymentExceedsTotal
from pos_core.models import Base, PaymentMethod
from pos_core.services.event_service import InMemoryEventSink, set_event_sink
from pos_core.services.payment_service import get_total_recorded, list_payments, record_payment


class ConcurrentPaymentTests(unittest.TestCase):
    """Two tills paying the same order at once, each on its own connection."""

    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        path = os.path.join(self._tmpdir.name, 'pos.db')
        # BEGIN IMMEDIATE takes the write lock up front, standing in for the row lock on the order.
        self.engine = make_engine(f'sqlite+pysqlite:///{path}', begin_sql='BEGIN IMMEDIATE')
        Base.metadata.create_all(self.engine)
        self.sink = InMemoryEventSink()
        self._previous_sink = set_event_sink(self.sink)

        with Session(self.engine, expire_on_commit=False) as db:
            self.cashier = make_staff(db)
            shift = make_shift(db, self.cashier)
            self.order = make_order(db, shift=shift, staff=self.cashier, total='10000')
            db.commit()

    def tearDown(self) -> None:
        set_event_sink(self._previous_sink)
        self.engine.dispose()
        self._tmpdir.cleanup()

    def test_parallel_payments_cannot_exceed_total(self) -> None:
        barrier = threading.Barrier(2)
        outcomes: list = []
        lock = threading.Lock()

        def pay() -> None:
            barrier.wait()
            with Session(self.engine, expire_on_commit=False) as db:
                try:
                    payment = record_payment(
                        db,
                        order_id=self.order.id,
                        amount=Decimal('6000'),
                        method=PaymentMethod.CASH,
                        actor_id=self.cashier.id,
                    )
                    db.commit()
                    result = payment.id
                except Exception as exc:
                    db.rollback()
                    result = exc
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=pay) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(len(outcomes), 2)
        failures = [o for o in outcomes if isinstance(o, Exception)]
        self.assertEqual(len(failures), 1, outcomes)
        self.assertIsInstance(failures[0], PaymentExceedsTotal)
        self.assertEqual(failures[0].current_total, Decimal('6000.00'))

        with Session(self.engine) as db:
            self.assertEqual(len(list_payments(db, order_id=self.order.id)), 1)
            self.assertLessEqual(get_total_recorded(db, self.order.id), Decimal('10000.00'))
