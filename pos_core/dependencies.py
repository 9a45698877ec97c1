from fastapi import Header


def get_actor_id(x_staff_id: int = Header(alias='X-Staff-Id')) -> int:
    """Staff id of the caller, as established by the front-end session layer."""
    return x_staff_id


def get_idempotency_key(idempotency_key: str | None = Header(default=None, alias='Idempotency-Key')) -> str | None:
    if idempotency_key is None:
        return None
    return idempotency_key.strip() or None
