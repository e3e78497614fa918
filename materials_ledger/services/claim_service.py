from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session, selectinload

from materials_ledger.auth import Principal
from materials_ledger.config import settings
from materials_ledger.models import (
    Claim,
    ClaimItem,
    ClaimStatus,
    ClaimType,
    MovementSource,
    PrincipalRole,
    ProjectMaterial,
)
from materials_ledger.services import audit_service, inventory_ledger, notification_service
from materials_ledger.services.errors import (
    BOM_DRIFT,
    MATERIAL_CREATED,
    STOCK_SHORTFALL,
    InvalidTransition,
    LedgerWarning,
    NotFound,
    ValidationError,
)
from materials_ledger.services.numbering import CLAIM, NumberGenerator
from materials_ledger.services.project_materials import (
    DEFAULT_PHASE,
    MaterialLineInput,
    add_claimed,
    get_project,
    match_material,
    validate_material_lines,
)
from materials_ledger.services.provider_factory import get_number_generator
from materials_ledger.services.transitions import ensure_transition, sources_for

logger = logging.getLogger(__name__)

BOM_DRIFT_POLICIES = ('warn', 'reject', 'create')


@dataclass
class ClaimResult:
    claim: Claim
    warnings: list[LedgerWarning] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _append_note(existing: str | None, addition: str | None) -> str | None:
    text = (addition or '').strip()
    if not text:
        return existing
    if not existing:
        return text
    return f'{existing}\n{text}'


def get_claim(db: Session, claim_id: int) -> Claim:
    claim = db.execute(
        select(Claim).options(selectinload(Claim.items)).where(Claim.id == claim_id)
    ).scalar_one_or_none()
    if claim is None:
        raise NotFound('Claim', claim_id)
    return claim


def list_claims(
    db: Session,
    *,
    project_id: int | None = None,
    status: ClaimStatus | None = None,
    limit: int = 100,
) -> list[Claim]:
    query = select(Claim).options(selectinload(Claim.items))
    if project_id is not None:
        query = query.where(Claim.project_id == project_id)
    if status is not None:
        query = query.where(Claim.status == status)
    return db.execute(query.order_by(Claim.created_at.desc(), Claim.id.desc()).limit(limit)).scalars().all()


def list_pending_claims(db: Session, *, limit: int = 100) -> list[Claim]:
    emergency_first = case((Claim.claim_type == ClaimType.EMERGENCY, 0), else_=1)
    return db.execute(
        select(Claim)
        .options(selectinload(Claim.items))
        .where(Claim.status == ClaimStatus.PENDING)
        .order_by(emergency_first, Claim.created_at.asc(), Claim.id.asc())
        .limit(limit)
    ).scalars().all()


def submit_claim(
    db: Session,
    *,
    actor: Principal,
    project_id: int,
    items: list[MaterialLineInput],
    photo_ref: str | None,
    notes: str | None = None,
    claim_type: ClaimType = ClaimType.STANDARD,
    emergency_reason: str | None = None,
    numbers: NumberGenerator | None = None,
) -> Claim:
    photo = (photo_ref or '').strip()
    if not photo:
        raise ValidationError('A photo reference is required to submit a claim')
    claim_type = ClaimType(claim_type)
    reason = (emergency_reason or '').strip() or None
    if claim_type == ClaimType.EMERGENCY and not reason:
        raise ValidationError('Emergency claims require a reason')

    get_project(db, project_id)
    lines = validate_material_lines(db, items)

    generator = numbers or get_number_generator()
    claim = Claim(
        claim_number=generator.next_number(db, kind=CLAIM),
        project_id=project_id,
        status=ClaimStatus.PENDING,
        claim_type=claim_type,
        emergency_reason=reason if claim_type == ClaimType.EMERGENCY else None,
        photo_ref=photo,
        notes=(notes or '').strip() or None,
        submitted_by_principal_id=actor.id,
        submitted_by_name=actor.display_name,
        items=[ClaimItem(product_id=line.product_id, phase=line.phase, quantity=line.quantity) for line in lines],
    )
    db.add(claim)
    db.flush()

    total_units = sum(line.quantity for line in lines)
    audit_service.log_audit(
        db,
        actor=actor,
        action=audit_service.CLAIM_INITIATED,
        description=f'{actor.display_name} submitted claim {claim.claim_number} for {total_units} units',
        entity_type='claim',
        entity_id=claim.id,
        photo_ref=photo,
        metadata={
            'claim_number': claim.claim_number,
            'project_id': project_id,
            'claim_type': claim_type.value,
            'items': [{'product_id': line.product_id, 'quantity': line.quantity, 'phase': line.phase} for line in lines],
        },
    )

    notification_service.notify(
        db,
        recipient_ids=[actor.id],
        message=f'Your claim {claim.claim_number} was submitted and is awaiting review',
        notification_type='claim_submitted',
        related_claim_id=claim.id,
    )
    reviewer_role = PrincipalRole.ADMIN if claim_type == ClaimType.EMERGENCY else PrincipalRole.WAREHOUSE
    prefix = 'Emergency claim' if claim_type == ClaimType.EMERGENCY else 'Claim'
    notification_service.notify_role(
        db,
        role=reviewer_role,
        message=f'{prefix} {claim.claim_number} from {actor.display_name} needs review',
        notification_type='claim_pending',
        related_claim_id=claim.id,
    )
    db.flush()
    logger.info('Claim submitted: claim=%s project=%s type=%s', claim.claim_number, project_id, claim_type.value)
    return claim


def _claim_status(db: Session, claim_id: int) -> ClaimStatus:
    status = db.execute(select(Claim.status).where(Claim.id == claim_id)).scalar_one_or_none()
    if status is None:
        raise NotFound('Claim', claim_id)
    return status


def _take_pending(db: Session, *, claim_id: int, target: ClaimStatus, actor: Principal, **values) -> None:
    # Precondition check and status write in one statement; a concurrent
    # processor that got there first leaves us with rowcount 0.
    result = db.execute(
        update(Claim)
        .where(Claim.id == claim_id, Claim.status.in_(sources_for(target)))
        .values(
            status=target,
            processed_by_principal_id=actor.id,
            processed_by_name=actor.display_name,
            processed_at=_now(),
            updated_at=_now(),
            **values,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        current = _claim_status(db, claim_id)
        raise InvalidTransition('Claim', claim_id, current.value, target.value)


def approve_claim(
    db: Session,
    *,
    claim_id: int,
    actor: Principal,
    bom_drift_policy: str | None = None,
) -> ClaimResult:
    policy = (bom_drift_policy or settings.bom_drift_policy).strip().lower()
    if policy not in BOM_DRIFT_POLICIES:
        raise ValidationError(f'Unknown BOM drift policy: {policy}')

    claim = get_claim(db, claim_id)
    ensure_transition('Claim', claim_id, ClaimStatus(claim.status), ClaimStatus.APPROVED)

    matches: list[tuple[ClaimItem, ProjectMaterial | None]] = []
    for item in claim.items:
        material = match_material(db, project_id=claim.project_id, product_id=item.product_id, phase=item.phase)
        matches.append((item, material))
    drifted = [item.product_id for item, material in matches if material is None]
    if drifted and policy == 'reject':
        raise ValidationError(
            f'Claim {claim.claim_number} has products without a project material row: '
            + ', '.join(str(product_id) for product_id in drifted)
        )

    _take_pending(db, claim_id=claim_id, target=ClaimStatus.APPROVED, actor=actor)

    warnings: list[LedgerWarning] = []
    created: dict[tuple[int, str], ProjectMaterial] = {}
    for item, material in matches:
        balance = inventory_ledger.decrement(
            db,
            product_id=item.product_id,
            quantity=item.quantity,
            source_type=MovementSource.CLAIM,
            source_id=claim.id,
            actor_id=actor.id,
        )
        if balance < 0:
            warnings.append(
                LedgerWarning(
                    code=STOCK_SHORTFALL,
                    message=f'Product {item.product_id} stock is {balance} after approving {claim.claim_number}',
                    product_id=item.product_id,
                    item_id=item.id,
                )
            )

        if material is not None:
            add_claimed(db, material_id=material.id, quantity=item.quantity)
            continue

        if policy == 'create':
            key = (item.product_id, item.phase or DEFAULT_PHASE)
            row = created.get(key)
            if row is None:
                row = ProjectMaterial(
                    project_id=claim.project_id,
                    product_id=item.product_id,
                    phase=key[1],
                    required_quantity=0,
                    claimed_quantity=item.quantity,
                )
                db.add(row)
                created[key] = row
                warnings.append(
                    LedgerWarning(
                        code=MATERIAL_CREATED,
                        message=f'Created project material row for product {item.product_id} phase {key[1]}',
                        product_id=item.product_id,
                        item_id=item.id,
                    )
                )
            else:
                row.claimed_quantity += item.quantity
        else:
            warnings.append(
                LedgerWarning(
                    code=BOM_DRIFT,
                    message=f'Product {item.product_id} is not on the project material list; claimed counter not updated',
                    product_id=item.product_id,
                    item_id=item.id,
                )
            )

    for warning in warnings:
        logger.warning('Claim %s approval warning %s: %s', claim.claim_number, warning.code, warning.message)

    total_units = sum(item.quantity for item in claim.items)
    audit_service.log_audit(
        db,
        actor=actor,
        action=audit_service.CLAIM_APPROVED,
        description=f'{actor.display_name} approved claim {claim.claim_number} ({total_units} units)',
        entity_type='claim',
        entity_id=claim.id,
        photo_ref=claim.photo_ref,
        metadata={
            'claim_number': claim.claim_number,
            'project_id': claim.project_id,
            'items': [{'product_id': item.product_id, 'quantity': item.quantity} for item in claim.items],
            'bom_drift_product_ids': drifted,
            'bom_drift_policy': policy,
            'warnings': [warning.code for warning in warnings],
        },
    )

    admin_ids = notification_service.active_recipient_ids(db, role=PrincipalRole.ADMIN)
    notification_service.notify(
        db,
        recipient_ids=admin_ids,
        message=f'Claim {claim.claim_number} approved by {actor.display_name}',
        notification_type='claim_approved',
        related_claim_id=claim.id,
    )
    # Admins who submitted the claim already have the approval notice above.
    notification_service.notify(
        db,
        recipient_ids=[pid for pid in [claim.submitted_by_principal_id] if pid not in admin_ids],
        message=f'Your claim {claim.claim_number} was approved',
        notification_type='claim_approved',
        related_claim_id=claim.id,
    )
    db.flush()
    db.refresh(claim)
    logger.info('Claim approved: claim=%s by=%s warnings=%s', claim.claim_number, actor.username, len(warnings))
    return ClaimResult(claim=claim, warnings=warnings)


def deny_claim(db: Session, *, claim_id: int, actor: Principal, reason: str | None = None) -> ClaimResult:
    claim = get_claim(db, claim_id)
    ensure_transition('Claim', claim_id, ClaimStatus(claim.status), ClaimStatus.DENIED)
    denial_reason = (reason or '').strip() or None

    _take_pending(db, claim_id=claim_id, target=ClaimStatus.DENIED, actor=actor, denial_reason=denial_reason)
    db.refresh(claim)
    if denial_reason:
        claim.notes = _append_note(claim.notes, f'Denied: {denial_reason}')

    audit_service.log_audit(
        db,
        actor=actor,
        action=audit_service.CLAIM_DENIED,
        description=f'{actor.display_name} denied claim {claim.claim_number}',
        entity_type='claim',
        entity_id=claim.id,
        metadata={'claim_number': claim.claim_number, 'reason': denial_reason},
    )
    message = f'Your claim {claim.claim_number} was denied'
    if denial_reason:
        message = f'{message}: {denial_reason}'
    notification_service.notify(
        db,
        recipient_ids=[claim.submitted_by_principal_id],
        message=message,
        notification_type='claim_denied',
        related_claim_id=claim.id,
    )
    db.flush()
    logger.info('Claim denied: claim=%s by=%s', claim.claim_number, actor.username)
    return ClaimResult(claim=claim)


def claim_to_dict(claim: Claim) -> dict:
    return {
        'id': claim.id,
        'claim_number': claim.claim_number,
        'project_id': claim.project_id,
        'status': ClaimStatus(claim.status).value,
        'claim_type': ClaimType(claim.claim_type).value,
        'emergency_reason': claim.emergency_reason,
        'photo_ref': claim.photo_ref,
        'notes': claim.notes,
        'denial_reason': claim.denial_reason,
        'submitted_by_principal_id': claim.submitted_by_principal_id,
        'submitted_by_name': claim.submitted_by_name,
        'processed_by_principal_id': claim.processed_by_principal_id,
        'processed_by_name': claim.processed_by_name,
        'processed_at': claim.processed_at,
        'created_at': claim.created_at,
        'items': [
            {'id': item.id, 'product_id': item.product_id, 'phase': item.phase, 'quantity': item.quantity}
            for item in claim.items
        ],
    }
