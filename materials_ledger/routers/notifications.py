from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from materials_ledger.auth import Principal, get_current_principal
from materials_ledger.db import get_db
from materials_ledger.dependencies import commit, http_error
from materials_ledger.services.errors import LedgerError
from materials_ledger.services.notification_service import (
    list_notifications,
    mark_all_read,
    mark_read,
    notification_to_dict,
    unread_count,
)

router = APIRouter(prefix='/notifications', tags=['notifications'])


@router.get('')
def index(
    unread_only: bool = False,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    rows = list_notifications(db, recipient_id=principal.id, unread_only=unread_only)
    return {
        'notifications': [notification_to_dict(row) for row in rows],
        'unread_count': unread_count(db, recipient_id=principal.id),
    }


@router.post('/{notification_id}/read')
def read_one(
    notification_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        notification = mark_read(db, notification_id=notification_id, recipient_id=principal.id)
        commit(db)
    except LedgerError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return {'notification': notification_to_dict(notification)}


@router.post('/read-all')
def read_all(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        updated = mark_all_read(db, recipient_id=principal.id)
        commit(db)
    except LedgerError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return {'updated': updated}
