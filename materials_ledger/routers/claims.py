from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from materials_ledger.auth import Principal, Role, get_current_principal, require_role
from materials_ledger.db import get_db
from materials_ledger.dependencies import commit, http_error
from materials_ledger.models import ClaimStatus
from materials_ledger.schemas import ClaimDeny, ClaimSubmit
from materials_ledger.services.claim_service import (
    approve_claim,
    claim_to_dict,
    deny_claim,
    get_claim,
    list_claims,
    list_pending_claims,
    submit_claim,
)
from materials_ledger.services.errors import LedgerError
from materials_ledger.services.project_materials import MaterialLineInput

router = APIRouter(prefix='/claims', tags=['claims'])
onsite_access = require_role(Role.ONSITE)
warehouse_access = require_role(Role.WAREHOUSE)


@router.post('', status_code=201)
def submit(
    body: ClaimSubmit,
    principal: Principal = Depends(onsite_access),
    db: Session = Depends(get_db),
):
    try:
        claim = submit_claim(
            db,
            actor=principal,
            project_id=body.project_id,
            items=[MaterialLineInput(product_id=i.product_id, quantity=i.quantity, phase=i.phase) for i in body.items],
            photo_ref=body.photo_ref,
            notes=body.notes,
            claim_type=body.claim_type,
            emergency_reason=body.emergency_reason,
        )
        commit(db)
    except LedgerError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return {'claim': claim_to_dict(claim)}


@router.get('')
def index(
    project_id: int | None = None,
    status: str | None = None,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        parsed_status = ClaimStatus(status) if status else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid status filter') from exc
    return {'claims': [claim_to_dict(claim) for claim in list_claims(db, project_id=project_id, status=parsed_status)]}


@router.get('/pending')
def pending(
    _: Principal = Depends(warehouse_access),
    db: Session = Depends(get_db),
):
    return {'claims': [claim_to_dict(claim) for claim in list_pending_claims(db)]}


@router.get('/{claim_id}')
def detail(
    claim_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        claim = get_claim(db, claim_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return {'claim': claim_to_dict(claim)}


@router.post('/{claim_id}/approve')
def approve(
    claim_id: int,
    principal: Principal = Depends(warehouse_access),
    db: Session = Depends(get_db),
):
    try:
        result = approve_claim(db, claim_id=claim_id, actor=principal)
        commit(db)
    except LedgerError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return {
        'claim': claim_to_dict(result.claim),
        'warnings': [warning.as_dict() for warning in result.warnings],
    }


@router.post('/{claim_id}/deny')
def deny(
    claim_id: int,
    body: ClaimDeny,
    principal: Principal = Depends(warehouse_access),
    db: Session = Depends(get_db),
):
    try:
        result = deny_claim(db, claim_id=claim_id, actor=principal, reason=body.reason)
        commit(db)
    except LedgerError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return {'claim': claim_to_dict(result.claim), 'warnings': []}
