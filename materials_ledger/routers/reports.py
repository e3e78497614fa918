from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from materials_ledger.auth import Principal, Role, require_role
from materials_ledger.db import get_db
from materials_ledger.dependencies import parse_date_range
from materials_ledger.services.audit_service import audit_to_dict, list_audit_logs
from materials_ledger.services.metrics_service import (
    CRITICAL,
    HEALTHY,
    REORDER,
    capital_committed,
    dashboard_summary,
    inventory_value,
    stock_health,
    system_leakage,
)

router = APIRouter(prefix='/reports', tags=['reports'])
admin_access = require_role(Role.ADMIN)
dashboard_access = require_role(Role.WAREHOUSE, Role.PURCHASER)


@router.get('/summary')
def summary(_: Principal = Depends(dashboard_access), db: Session = Depends(get_db)):
    return dashboard_summary(db)


@router.get('/stock-health')
def stock_health_report(
    status: str | None = None,
    _: Principal = Depends(dashboard_access),
    db: Session = Depends(get_db),
):
    if status and status not in (HEALTHY, REORDER, CRITICAL):
        raise HTTPException(status_code=400, detail='Invalid status filter')
    rows = stock_health(db, status=status)
    return {
        'items': [
            {
                'product_id': row.product_id,
                'sku': row.sku,
                'product_name': row.product_name,
                'in_stock': row.in_stock,
                'allocated': row.allocated,
                'safety_stock': row.safety_stock,
                'days_left': str(row.days_left) if row.days_left is not None else None,
                'status': row.status,
            }
            for row in rows
        ]
    }


@router.get('/financials')
def financials(
    from_date: str | None = None,
    to_date: str | None = None,
    _: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    start, end = parse_date_range(from_date, to_date)
    return {
        'system_leakage': str(system_leakage(db, start=start, end=end)),
        'inventory_value': str(inventory_value(db)),
        'capital_committed': str(capital_committed(db)),
    }


@router.get('/audit-log')
def audit_log(
    action: str | None = None,
    user: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
    _: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    start, end = parse_date_range(from_date, to_date)
    rows = list_audit_logs(
        db,
        action=action,
        actor_name=user,
        entity_type=entity_type,
        entity_id=entity_id,
        start=start,
        end=end,
    )
    return {'entries': [audit_to_dict(row) for row in rows]}
