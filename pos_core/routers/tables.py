from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pos_core.db import get_db
from pos_core.errors import TableNotFound
from pos_core.models import RestaurantTable
from pos_core.services.table_service import is_table_occupied

router = APIRouter(prefix='/tables', tags=['tables'])


@router.get('/{table_id}/occupancy')
def occupancy(table_id: int, db: Session = Depends(get_db)):
    table = db.get(RestaurantTable, table_id)
    if not table:
        raise TableNotFound(table_id)
    return {
        'table_id': table.id,
        'label': table.label,
        'status': table.status.value,
        'occupied': is_table_occupied(db, table.id),
    }
