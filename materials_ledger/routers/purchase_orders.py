from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from materials_ledger.auth import Principal, Role, get_current_principal, require_role
from materials_ledger.db import get_db
from materials_ledger.dependencies import commit, http_error
from materials_ledger.models import PurchaseOrderStatus
from materials_ledger.schemas import PurchaseOrderCreate, QARequest, ReceiveRequest
from materials_ledger.services.errors import LedgerError
from materials_ledger.services.purchase_order_service import (
    PurchaseOrderLineInput,
    ReceiveLineInput,
    cancel_purchase_order,
    complete_qa,
    create_purchase_order,
    get_purchase_order,
    list_purchase_orders,
    list_receipts,
    mark_in_transit,
    purchase_order_to_dict,
    receipt_to_dict,
    receive_items,
    send_purchase_order,
)

router = APIRouter(prefix='/purchase-orders', tags=['purchase-orders'])
purchaser_access = require_role(Role.PURCHASER)
receiving_access = require_role(Role.WAREHOUSE, Role.PURCHASER)
inspector_access = require_role(Role.INSPECTOR)


@router.post('', status_code=201)
def create(
    body: PurchaseOrderCreate,
    principal: Principal = Depends(purchaser_access),
    db: Session = Depends(get_db),
):
    try:
        po = create_purchase_order(
            db,
            actor=principal,
            vendor_id=body.vendor_id,
            lines=[
                PurchaseOrderLineInput(
                    product_id=line.product_id,
                    quantity_ordered=line.quantity_ordered,
                    unit_cost=line.unit_cost,
                )
                for line in body.lines
            ],
            notes=body.notes,
            expected_delivery_date=body.expected_delivery_date,
        )
        commit(db)
    except LedgerError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return {'purchase_order': purchase_order_to_dict(po)}


@router.get('')
def index(
    status: str | None = None,
    vendor_id: int | None = None,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        parsed_status = PurchaseOrderStatus(status) if status else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid status filter') from exc
    rows = list_purchase_orders(db, status=parsed_status, vendor_id=vendor_id)
    return {'purchase_orders': [purchase_order_to_dict(po) for po in rows]}


@router.get('/{po_id}')
def detail(
    po_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        po = get_purchase_order(db, po_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return purchase_order_to_dict(po)


@router.get('/{po_id}/receipts')
def receipts(
    po_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        get_purchase_order(db, po_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return {'receipts': [receipt_to_dict(receipt) for receipt in list_receipts(db, po_id=po_id)]}


def _status_change(action, po_id: int, principal: Principal, db: Session) -> dict:
    try:
        po = action(db, po_id=po_id, actor=principal)
        commit(db)
    except LedgerError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return {'purchase_order': purchase_order_to_dict(po)}


@router.post('/{po_id}/send')
def send(po_id: int, principal: Principal = Depends(purchaser_access), db: Session = Depends(get_db)):
    return _status_change(send_purchase_order, po_id, principal, db)


@router.post('/{po_id}/in-transit')
def in_transit(po_id: int, principal: Principal = Depends(purchaser_access), db: Session = Depends(get_db)):
    return _status_change(mark_in_transit, po_id, principal, db)


@router.post('/{po_id}/cancel')
def cancel(po_id: int, principal: Principal = Depends(purchaser_access), db: Session = Depends(get_db)):
    return _status_change(cancel_purchase_order, po_id, principal, db)


@router.post('/{po_id}/receive')
def receive(
    po_id: int,
    body: ReceiveRequest,
    principal: Principal = Depends(receiving_access),
    db: Session = Depends(get_db),
):
    try:
        result = receive_items(
            db,
            po_id=po_id,
            actor=principal,
            lines=[ReceiveLineInput(item_id=line.item_id, quantity=line.quantity) for line in body.lines],
            notes=body.notes,
        )
        commit(db)
    except LedgerError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return {
        'purchase_order': purchase_order_to_dict(result.purchase_order),
        'receipt': receipt_to_dict(result.receipt),
        'status': result.status.value,
        'warnings': [warning.as_dict() for warning in result.warnings],
    }


@router.post('/{po_id}/qa')
def qa(
    po_id: int,
    body: QARequest,
    principal: Principal = Depends(inspector_access),
    db: Session = Depends(get_db),
):
    try:
        result = complete_qa(
            db,
            po_id=po_id,
            actor=principal,
            good_qty=body.good_qty,
            bad_qty=body.bad_qty,
            photo_ref=body.photo_ref,
        )
        commit(db)
    except LedgerError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return {
        'purchase_order': purchase_order_to_dict(result.purchase_order),
        'warnings': [warning.as_dict() for warning in result.warnings],
    }
