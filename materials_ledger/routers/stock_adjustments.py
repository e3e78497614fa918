from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from materials_ledger.auth import Principal, Role, require_role
from materials_ledger.db import get_db
from materials_ledger.dependencies import commit, http_error, parse_date_range
from materials_ledger.schemas import StockAdjustmentCreate
from materials_ledger.services.errors import LedgerError
from materials_ledger.services.stock_adjustment_service import adjustment_to_dict, list_adjustments, record_adjustment

router = APIRouter(prefix='/stock-adjustments', tags=['stock-adjustments'])
admin_access = require_role(Role.ADMIN)


@router.post('', status_code=201)
def create(
    body: StockAdjustmentCreate,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    try:
        adjustment = record_adjustment(
            db,
            actor=principal,
            product_id=body.product_id,
            delta=body.delta,
            reason=body.reason,
            notes=body.notes,
        )
        commit(db)
    except LedgerError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return {'adjustment': adjustment_to_dict(adjustment)}


@router.get('')
def index(
    product_id: int | None = None,
    reason: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
    _: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    start, end = parse_date_range(from_date, to_date)
    try:
        rows = list_adjustments(db, product_id=product_id, reason=reason, start=start, end=end)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return {'adjustments': [adjustment_to_dict(row) for row in rows]}
