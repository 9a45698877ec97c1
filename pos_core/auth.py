from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_core.errors import StaffNotFound, UnauthorizedRole
from pos_core.models import Staff, StaffRole

ELEVATED_ROLES = frozenset({StaffRole.MANAGER, StaffRole.ADMIN})


def assert_role(db: Session, staff_id: int, allowed_roles: Iterable[StaffRole]) -> Staff:
    allowed = frozenset(allowed_roles)
    staff = db.execute(select(Staff).where(Staff.id == staff_id)).scalar_one_or_none()
    if not staff:
        raise StaffNotFound(staff_id)
    # Deactivated accounts keep their role but lose every privilege.
    if not staff.active or staff.role not in allowed:
        raise UnauthorizedRole(staff_id, staff.role, allowed)
    return staff
