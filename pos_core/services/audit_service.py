from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pos_core.models import AuditLog

logger = logging.getLogger(__name__)

ORDER_STATUS = 'ORDER_STATUS'
ORDER_CANCEL = 'ORDER_CANCEL'
PAYMENT = 'PAYMENT'
TABLE_RELEASE = 'TABLE_RELEASE'
TABLE_OCCUPY = 'TABLE_OCCUPY'
SHIFT_CLOSE = 'SHIFT_CLOSE'


def log_audit(
    db: Session,
    *,
    actor_staff_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int | str | None,
    previous_state: dict | None = None,
    new_state: dict | None = None,
) -> None:
    """Append one audit row inside a savepoint.

    A failed audit write is logged and dropped; the surrounding business
    transaction carries on untouched.
    """
    try:
        with db.begin_nested():
            db.add(
                AuditLog(
                    actor_staff_id=actor_staff_id,
                    action=action,
                    entity_type=entity_type,
                    entity_id=str(entity_id) if entity_id is not None else None,
                    previous_state=previous_state,
                    new_state=new_state,
                )
            )
    except SQLAlchemyError:
        logger.exception('Audit write failed: action=%s entity=%s:%s', action, entity_type, entity_id)
