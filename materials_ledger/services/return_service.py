from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from materials_ledger.auth import Principal
from materials_ledger.models import Claim, MovementSource, Return, ReturnItem, ReturnStatus
from materials_ledger.services import audit_service, inventory_ledger
from materials_ledger.services.errors import (
    BOM_DRIFT,
    CLAIMED_CLAMPED,
    InvalidTransition,
    LedgerWarning,
    NotFound,
    ValidationError,
)
from materials_ledger.services.numbering import RETURN, NumberGenerator
from materials_ledger.services.project_materials import (
    MaterialLineInput,
    get_project,
    match_material,
    release_claimed,
    validate_material_lines,
)
from materials_ledger.services.provider_factory import get_number_generator
from materials_ledger.services.transitions import ensure_transition, sources_for

logger = logging.getLogger(__name__)


@dataclass
class ReturnResult:
    return_record: Return
    warnings: list[LedgerWarning] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def get_return(db: Session, return_id: int) -> Return:
    record = db.execute(
        select(Return).options(selectinload(Return.items)).where(Return.id == return_id)
    ).scalar_one_or_none()
    if record is None:
        raise NotFound('Return', return_id)
    return record


def list_returns(
    db: Session,
    *,
    project_id: int | None = None,
    status: ReturnStatus | None = None,
    limit: int = 100,
) -> list[Return]:
    query = select(Return).options(selectinload(Return.items))
    if project_id is not None:
        query = query.where(Return.project_id == project_id)
    if status is not None:
        query = query.where(Return.status == status)
    return db.execute(query.order_by(Return.created_at.desc(), Return.id.desc()).limit(limit)).scalars().all()


def submit_return(
    db: Session,
    *,
    actor: Principal,
    project_id: int,
    items: list[MaterialLineInput],
    reason: str,
    photo_ref: str | None,
    claim_id: int | None = None,
    notes: str | None = None,
    numbers: NumberGenerator | None = None,
) -> Return:
    photo = (photo_ref or '').strip()
    if not photo:
        raise ValidationError('A photo reference is required to submit a return')
    reason_text = (reason or '').strip()
    if not reason_text:
        raise ValidationError('A return reason is required')

    get_project(db, project_id)
    if claim_id is not None:
        claim_project = db.execute(select(Claim.project_id).where(Claim.id == claim_id)).scalar_one_or_none()
        if claim_project is None:
            raise NotFound('Claim', claim_id)
        if claim_project != project_id:
            raise ValidationError(f'Claim {claim_id} belongs to a different project')
    lines = validate_material_lines(db, items)

    generator = numbers or get_number_generator()
    record = Return(
        return_number=generator.next_number(db, kind=RETURN),
        project_id=project_id,
        claim_id=claim_id,
        status=ReturnStatus.PENDING,
        reason=reason_text,
        photo_ref=photo,
        notes=(notes or '').strip() or None,
        submitted_by_principal_id=actor.id,
        submitted_by_name=actor.display_name,
        items=[ReturnItem(product_id=line.product_id, phase=line.phase, quantity=line.quantity) for line in lines],
    )
    db.add(record)
    db.flush()

    audit_service.log_audit(
        db,
        actor=actor,
        action=audit_service.RETURN_INITIATED,
        description=f'{actor.display_name} submitted return {record.return_number}',
        entity_type='return',
        entity_id=record.id,
        photo_ref=photo,
        metadata={
            'return_number': record.return_number,
            'project_id': project_id,
            'claim_id': claim_id,
            'reason': reason_text,
            'items': [{'product_id': line.product_id, 'quantity': line.quantity} for line in lines],
        },
    )
    db.flush()
    logger.info('Return submitted: return=%s project=%s', record.return_number, project_id)
    return record


def _take_pending(db: Session, *, return_id: int, target: ReturnStatus, actor: Principal) -> None:
    result = db.execute(
        update(Return)
        .where(Return.id == return_id, Return.status.in_(sources_for(target)))
        .values(
            status=target,
            processed_by_principal_id=actor.id,
            processed_by_name=actor.display_name,
            processed_at=_now(),
            updated_at=_now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        current = db.execute(select(Return.status).where(Return.id == return_id)).scalar_one()
        raise InvalidTransition('Return', return_id, current.value, target.value)


def approve_return(db: Session, *, return_id: int, actor: Principal) -> ReturnResult:
    record = get_return(db, return_id)
    ensure_transition('Return', return_id, ReturnStatus(record.status), ReturnStatus.APPROVED)

    _take_pending(db, return_id=return_id, target=ReturnStatus.APPROVED, actor=actor)

    warnings: list[LedgerWarning] = []
    for item in record.items:
        inventory_ledger.increment(
            db,
            product_id=item.product_id,
            quantity=item.quantity,
            source_type=MovementSource.RETURN,
            source_id=record.id,
            actor_id=actor.id,
        )
        material = match_material(db, project_id=record.project_id, product_id=item.product_id, phase=item.phase)
        if material is None:
            warnings.append(
                LedgerWarning(
                    code=BOM_DRIFT,
                    message=f'Product {item.product_id} is not on the project material list; claimed counter not updated',
                    product_id=item.product_id,
                    item_id=item.id,
                )
            )
            continue
        previous, new = release_claimed(db, material_id=material.id, quantity=item.quantity)
        if previous < item.quantity:
            warnings.append(
                LedgerWarning(
                    code=CLAIMED_CLAMPED,
                    message=(
                        f'Returned {item.quantity} of product {item.product_id} but only {previous} were claimed; '
                        f'claimed quantity clamped to {new}'
                    ),
                    product_id=item.product_id,
                    item_id=item.id,
                )
            )

    for warning in warnings:
        logger.warning('Return %s approval warning %s: %s', record.return_number, warning.code, warning.message)

    audit_service.log_audit(
        db,
        actor=actor,
        action=audit_service.RETURN_APPROVED,
        description=f'{actor.display_name} approved return {record.return_number}',
        entity_type='return',
        entity_id=record.id,
        photo_ref=record.photo_ref,
        metadata={
            'return_number': record.return_number,
            'project_id': record.project_id,
            'items': [{'product_id': item.product_id, 'quantity': item.quantity} for item in record.items],
            'warnings': [warning.code for warning in warnings],
        },
    )
    db.flush()
    db.refresh(record)
    logger.info('Return approved: return=%s by=%s', record.return_number, actor.username)
    return ReturnResult(return_record=record, warnings=warnings)


def reject_return(db: Session, *, return_id: int, actor: Principal, reason: str | None = None) -> ReturnResult:
    record = get_return(db, return_id)
    ensure_transition('Return', return_id, ReturnStatus(record.status), ReturnStatus.REJECTED)
    rejection = (reason or '').strip() or None

    _take_pending(db, return_id=return_id, target=ReturnStatus.REJECTED, actor=actor)
    db.refresh(record)
    if rejection:
        record.notes = f'{record.notes}\nRejected: {rejection}' if record.notes else f'Rejected: {rejection}'

    audit_service.log_audit(
        db,
        actor=actor,
        action=audit_service.RETURN_REJECTED,
        description=f'{actor.display_name} rejected return {record.return_number}',
        entity_type='return',
        entity_id=record.id,
        metadata={'return_number': record.return_number, 'reason': rejection},
    )
    db.flush()
    logger.info('Return rejected: return=%s by=%s', record.return_number, actor.username)
    return ReturnResult(return_record=record)


def return_to_dict(record: Return) -> dict:
    return {
        'id': record.id,
        'return_number': record.return_number,
        'project_id': record.project_id,
        'claim_id': record.claim_id,
        'status': ReturnStatus(record.status).value,
        'reason': record.reason,
        'photo_ref': record.photo_ref,
        'notes': record.notes,
        'submitted_by_name': record.submitted_by_name,
        'processed_by_name': record.processed_by_name,
        'processed_at': record.processed_at,
        'created_at': record.created_at,
        'items': [
            {'id': item.id, 'product_id': item.product_id, 'phase': item.phase, 'quantity': item.quantity}
            for item in record.items
        ],
    }
