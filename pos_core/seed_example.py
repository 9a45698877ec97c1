from decimal import Decimal

from sqlalchemy import select

from pos_core.db import SessionLocal, engine
from pos_core.models import Base, Product, RestaurantTable, Staff, StaffRole

DEMO_STAFF = [
    ('Admin', StaffRole.ADMIN),
    ('Floor Manager', StaffRole.MANAGER),
    ('Till 1', StaffRole.CASHIER),
    ('Waiter 1', StaffRole.WAITER),
    ('Kitchen', StaffRole.KITCHEN),
]

DEMO_PRODUCTS = [
    ('Rolex', Decimal('3000.00')),
    ('Chicken & Chips', Decimal('15000.00')),
    ('Beef Pilau', Decimal('12000.00')),
    ('Passion Juice', Decimal('4000.00')),
    ('Nile Special', Decimal('6000.00')),
]


def seed() -> None:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        for name, role in DEMO_STAFF:
            staff = db.execute(select(Staff).where(Staff.name == name)).scalar_one_or_none()
            if not staff:
                db.add(Staff(name=name, role=role, active=True))

        for name, price in DEMO_PRODUCTS:
            product = db.execute(select(Product).where(Product.name == name)).scalar_one_or_none()
            if not product:
                db.add(Product(name=name, price=price, active=True))

        for number in range(1, 9):
            label = f'T{number}'
            table = db.execute(select(RestaurantTable).where(RestaurantTable.label == label)).scalar_one_or_none()
            if not table:
                db.add(RestaurantTable(label=label, capacity=4))

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
