from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from materials_ledger.auth import Principal
from materials_ledger.models import AdjustmentReason, MovementSource, StockAdjustment
from materials_ledger.services import audit_service, inventory_ledger
from materials_ledger.services.errors import ValidationError
from materials_ledger.services.numbering import ADJUSTMENT, NumberGenerator
from materials_ledger.services.provider_factory import get_number_generator

logger = logging.getLogger(__name__)


def _parse_reason(reason: AdjustmentReason | str) -> AdjustmentReason:
    if isinstance(reason, AdjustmentReason):
        return reason
    try:
        return AdjustmentReason(str(reason).strip().lower())
    except ValueError as exc:
        allowed = ', '.join(member.value for member in AdjustmentReason)
        raise ValidationError(f'Invalid adjustment reason {reason!r}; expected one of {allowed}') from exc


def record_adjustment(
    db: Session,
    *,
    actor: Principal,
    product_id: int,
    delta: int,
    reason: AdjustmentReason | str,
    notes: str | None = None,
    numbers: NumberGenerator | None = None,
) -> StockAdjustment:
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError('Adjustment quantity must be a whole number')
    if delta == 0:
        raise ValidationError('Adjustment quantity must be non-zero')
    parsed_reason = _parse_reason(reason)
    inventory_ledger.get_item(db, product_id)

    new_stock = inventory_ledger.apply_delta(db, product_id=product_id, delta=delta, floor=0 if delta < 0 else None)
    previous_stock = new_stock - delta

    generator = numbers or get_number_generator()
    adjustment = StockAdjustment(
        adjustment_number=generator.next_number(db, kind=ADJUSTMENT),
        product_id=product_id,
        quantity_change=delta,
        reason=parsed_reason,
        notes=(notes or '').strip() or None,
        previous_stock=previous_stock,
        new_stock=new_stock,
        admin_principal_id=actor.id,
        admin_name=actor.display_name,
    )
    db.add(adjustment)
    db.flush()

    inventory_ledger.record_movement(
        db,
        product_id=product_id,
        delta=delta,
        balance_after=new_stock,
        source_type=MovementSource.ADJUSTMENT,
        source_id=adjustment.id,
        actor_id=actor.id,
    )
    audit_service.log_audit(
        db,
        actor=actor,
        action=audit_service.STOCK_ADJUSTMENT_CREATED,
        description=(
            f'{actor.display_name} adjusted product {product_id} by {delta:+d} '
            f'({parsed_reason.value}): {previous_stock} -> {new_stock}'
        ),
        entity_type='stock_adjustment',
        entity_id=adjustment.id,
        metadata={
            'adjustment_number': adjustment.adjustment_number,
            'product_id': product_id,
            'quantity_change': delta,
            'reason': parsed_reason.value,
            'previous_stock': previous_stock,
            'new_stock': new_stock,
        },
    )
    db.flush()
    logger.info(
        'Stock adjusted: adjustment=%s product=%s delta=%s reason=%s',
        adjustment.adjustment_number,
        product_id,
        delta,
        parsed_reason.value,
    )
    return adjustment


def list_adjustments(
    db: Session,
    *,
    product_id: int | None = None,
    reason: AdjustmentReason | str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
) -> list[StockAdjustment]:
    query = select(StockAdjustment)
    if product_id is not None:
        query = query.where(StockAdjustment.product_id == product_id)
    if reason:
        query = query.where(StockAdjustment.reason == _parse_reason(reason))
    if start:
        query = query.where(StockAdjustment.created_at >= start)
    if end:
        query = query.where(StockAdjustment.created_at <= end)
    return db.execute(
        query.order_by(StockAdjustment.created_at.desc(), StockAdjustment.id.desc()).limit(limit)
    ).scalars().all()


def adjustment_to_dict(adjustment: StockAdjustment) -> dict:
    return {
        'id': adjustment.id,
        'adjustment_number': adjustment.adjustment_number,
        'product_id': adjustment.product_id,
        'quantity_change': adjustment.quantity_change,
        'reason': AdjustmentReason(adjustment.reason).value,
        'notes': adjustment.notes,
        'previous_stock': adjustment.previous_stock,
        'new_stock': adjustment.new_stock,
        'admin_principal_id': adjustment.admin_principal_id,
        'admin_name': adjustment.admin_name,
        'created_at': adjustment.created_at,
    }
