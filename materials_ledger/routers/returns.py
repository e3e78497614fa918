from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from materials_ledger.auth import Principal, Role, get_current_principal, require_role
from materials_ledger.db import get_db
from materials_ledger.dependencies import commit, http_error
from materials_ledger.models import ReturnStatus
from materials_ledger.schemas import ReturnReject, ReturnSubmit
from materials_ledger.services.errors import LedgerError
from materials_ledger.services.project_materials import MaterialLineInput
from materials_ledger.services.return_service import (
    approve_return,
    get_return,
    list_returns,
    reject_return,
    return_to_dict,
    submit_return,
)

router = APIRouter(prefix='/returns', tags=['returns'])
submit_access = require_role(Role.ONSITE, Role.WAREHOUSE)
warehouse_access = require_role(Role.WAREHOUSE)


@router.post('', status_code=201)
def submit(
    body: ReturnSubmit,
    principal: Principal = Depends(submit_access),
    db: Session = Depends(get_db),
):
    try:
        record = submit_return(
            db,
            actor=principal,
            project_id=body.project_id,
            items=[MaterialLineInput(product_id=i.product_id, quantity=i.quantity, phase=i.phase) for i in body.items],
            reason=body.reason,
            photo_ref=body.photo_ref,
            claim_id=body.claim_id,
            notes=body.notes,
        )
        commit(db)
    except LedgerError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return {'return': return_to_dict(record)}


@router.get('')
def index(
    project_id: int | None = None,
    status: str | None = None,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        parsed_status = ReturnStatus(status) if status else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid status filter') from exc
    return {'returns': [return_to_dict(r) for r in list_returns(db, project_id=project_id, status=parsed_status)]}


@router.get('/{return_id}')
def detail(
    return_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        record = get_return(db, return_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return {'return': return_to_dict(record)}


@router.post('/{return_id}/approve')
def approve(
    return_id: int,
    principal: Principal = Depends(warehouse_access),
    db: Session = Depends(get_db),
):
    try:
        result = approve_return(db, return_id=return_id, actor=principal)
        commit(db)
    except LedgerError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return {
        'return': return_to_dict(result.return_record),
        'warnings': [warning.as_dict() for warning in result.warnings],
    }


@router.post('/{return_id}/reject')
def reject(
    return_id: int,
    body: ReturnReject,
    principal: Principal = Depends(warehouse_access),
    db: Session = Depends(get_db),
):
    try:
        result = reject_return(db, return_id=return_id, actor=principal, reason=body.reason)
        commit(db)
    except LedgerError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return {'return': return_to_dict(result.return_record), 'warnings': []}
