from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from pos_core.db import get_db
from pos_core.dependencies import get_actor_id, get_idempotency_key
from pos_core.models import Order, OrderItem, OrderStatus, Payment, PaymentMethod
from pos_core.services import idempotency_service
from pos_core.services.checkout_service import checkout_order
from pos_core.services.order_item_service import add_item, list_items, remove_item, update_item_quantity
from pos_core.services.order_service import cancel_order
from pos_core.services.order_status_service import allowed_next_statuses, set_order_status
from pos_core.services.payment_service import get_total_paid, list_payments, record_payment

router = APIRouter(prefix='/orders', tags=['orders'])


class AddItemIn(BaseModel):
    product_id: int
    quantity: int = 1
    size: str | None = None
    modifier: str | None = None
    notes: str | None = None


class UpdateItemIn(BaseModel):
    quantity: int


class StatusIn(BaseModel):
    status: OrderStatus


class PaymentIn(BaseModel):
    amount: Decimal = Field(max_digits=14, decimal_places=2)
    method: PaymentMethod
    reference: str | None = Field(default=None, max_length=128)
    auto_checkout: bool = False


def _order_out(order: Order) -> dict:
    return jsonable_encoder(
        {
            'id': order.id,
            'order_number': order.order_number,
            'order_type': order.order_type,
            'table_id': order.table_id,
            'shift_id': order.shift_id,
            'status': order.status,
            'allowed_next_statuses': allowed_next_statuses(order.status),
            'subtotal': str(order.subtotal),
            'tax': str(order.tax),
            'total': str(order.total),
        }
    )


def _item_out(item: OrderItem) -> dict:
    return jsonable_encoder(
        {
            'id': item.id,
            'order_id': item.order_id,
            'product_id': item.product_id,
            'product_name': item.product_name,
            'unit_price': str(item.unit_price),
            'quantity': item.quantity,
            'line_total': str(item.line_total),
            'size': item.size,
            'modifier': item.modifier,
            'notes': item.notes,
            'sort_order': item.sort_order,
        }
    )


def _payment_out(payment: Payment) -> dict:
    return jsonable_encoder(
        {
            'id': payment.id,
            'order_id': payment.order_id,
            'amount': str(payment.amount),
            'method': payment.method,
            'status': payment.status,
            'reference': payment.reference,
        }
    )


@router.get('/{order_id}/items')
def get_items(order_id: int, db: Session = Depends(get_db)):
    return {'items': [_item_out(item) for item in list_items(db, order_id=order_id)]}


@router.post('/{order_id}/items', status_code=201)
def post_item(
    order_id: int,
    payload: AddItemIn,
    actor_id: int = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    db: Session = Depends(get_db),
):
    def _run() -> dict:
        item = add_item(
            db,
            order_id=order_id,
            product_id=payload.product_id,
            quantity=payload.quantity,
            size=payload.size,
            modifier=payload.modifier,
            notes=payload.notes,
        )
        order = db.get(Order, order_id)
        return {'item': _item_out(item), 'order': _order_out(order)}

    result = idempotency_service.get_or_set_idempotent(
        db, key=idempotency_key, operation=idempotency_service.ADD_ITEM, fn=_run
    )
    db.commit()
    return result


@router.patch('/{order_id}/items/{item_id}')
def patch_item(
    order_id: int,
    item_id: int,
    payload: UpdateItemIn,
    actor_id: int = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    item = update_item_quantity(db, order_id=order_id, item_id=item_id, quantity=payload.quantity)
    order = db.get(Order, order_id)
    result = {'item': _item_out(item), 'order': _order_out(order)}
    db.commit()
    return result


@router.delete('/{order_id}/items/{item_id}')
def delete_item(
    order_id: int,
    item_id: int,
    actor_id: int = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    order = remove_item(db, order_id=order_id, item_id=item_id)
    result = {'order': _order_out(order)}
    db.commit()
    return result


@router.post('/{order_id}/status')
def post_status(
    order_id: int,
    payload: StatusIn,
    actor_id: int = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    db: Session = Depends(get_db),
):
    result = idempotency_service.get_or_set_idempotent(
        db,
        key=idempotency_key,
        operation=idempotency_service.ORDER_STATUS,
        fn=lambda: {
            'order': _order_out(set_order_status(db, order_id=order_id, new_status=payload.status, actor_id=actor_id))
        },
    )
    db.commit()
    return result


@router.post('/{order_id}/cancel')
def post_cancel(
    order_id: int,
    actor_id: int = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    db: Session = Depends(get_db),
):
    result = idempotency_service.get_or_set_idempotent(
        db,
        key=idempotency_key,
        operation=idempotency_service.ORDER_CANCEL,
        fn=lambda: {'order': _order_out(cancel_order(db, order_id=order_id, actor_id=actor_id))},
    )
    db.commit()
    return result


@router.get('/{order_id}/payments')
def get_payments(order_id: int, db: Session = Depends(get_db)):
    payments = list_payments(db, order_id=order_id)
    return {
        'payments': [_payment_out(payment) for payment in payments],
        'total_paid': str(get_total_paid(db, order_id)),
    }


@router.post('/{order_id}/payments', status_code=201)
def post_payment(
    order_id: int,
    payload: PaymentIn,
    actor_id: int = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    db: Session = Depends(get_db),
):
    def _run() -> dict:
        payment = record_payment(
            db,
            order_id=order_id,
            amount=payload.amount,
            method=payload.method,
            actor_id=actor_id,
            reference=payload.reference,
            auto_checkout=payload.auto_checkout,
        )
        order = db.get(Order, order_id)
        return {
            'payment': _payment_out(payment),
            'order': _order_out(order),
            'total_paid': str(get_total_paid(db, order_id)),
        }

    result = idempotency_service.get_or_set_idempotent(
        db, key=idempotency_key, operation=idempotency_service.PAYMENT, fn=_run
    )
    db.commit()
    return result


@router.post('/{order_id}/checkout')
def post_checkout(
    order_id: int,
    actor_id: int = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    db: Session = Depends(get_db),
):
    result = idempotency_service.get_or_set_idempotent(
        db,
        key=idempotency_key,
        operation=idempotency_service.CHECKOUT,
        fn=lambda: {'order': _order_out(checkout_order(db, order_id=order_id, actor_id=actor_id))},
    )
    db.commit()
    return result
