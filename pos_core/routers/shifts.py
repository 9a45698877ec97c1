from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from pos_core.db import get_db
from pos_core.dependencies import get_actor_id, get_idempotency_key
from pos_core.services import idempotency_service
from pos_core.services.shift_service import close_shift, get_shift_summary, list_terminal_cash_summaries

router = APIRouter(prefix='/shifts', tags=['shifts'])


class CloseShiftIn(BaseModel):
    counted_cash: Decimal = Field(ge=0, max_digits=14, decimal_places=2)
    manager_approval_staff_id: int | None = None


@router.get('/{shift_id}/summary')
def summary(shift_id: int, db: Session = Depends(get_db)):
    return get_shift_summary(db, shift_id).as_dict()


@router.post('/{shift_id}/close')
def close(
    shift_id: int,
    payload: CloseShiftIn,
    actor_id: int = Depends(get_actor_id),
    idempotency_key: str | None = Depends(get_idempotency_key),
    db: Session = Depends(get_db),
):
    result = idempotency_service.get_or_set_idempotent(
        db,
        key=idempotency_key,
        operation=idempotency_service.SHIFT_CLOSE,
        fn=lambda: close_shift(
            db,
            shift_id=shift_id,
            counted_cash=payload.counted_cash,
            closed_by_actor_id=actor_id,
            manager_approval_actor_id=payload.manager_approval_staff_id,
        ).as_dict(),
    )
    db.commit()
    return result


@router.get('/{shift_id}/terminal-cash')
def terminal_cash(shift_id: int, db: Session = Depends(get_db)):
    rows = list_terminal_cash_summaries(db, shift_id)
    return {
        'shift_id': shift_id,
        'terminals': [
            {
                'terminal_id': row.terminal_id,
                'cash_sales': str(row.cash_sales),
                'cash_payment_count': row.cash_payment_count,
                'expected_balance': str(row.expected_balance),
            }
            for row in rows
        ],
    }
