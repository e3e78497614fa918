"""Single write path for per-product stock quantities.

Workflows never assign ``InventoryItem.in_stock`` directly. They call
``increment``/``decrement`` (or ``apply_delta`` plus ``record_movement`` when
the movement's source id is only known after the change), which issue one
``UPDATE ... SET in_stock = in_stock + :delta`` statement and append a
movement row carrying the balance the update produced.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from materials_ledger.models import InventoryItem, InventoryMovement, MovementSource
from materials_ledger.services.errors import NotFound, ValidationError

logger = logging.getLogger(__name__)


def get_item(db: Session, product_id: int) -> InventoryItem:
    item = db.execute(select(InventoryItem).where(InventoryItem.id == product_id)).scalar_one_or_none()
    if item is None:
        raise NotFound('Product', product_id)
    return item


def ensure_products_exist(db: Session, product_ids: list[int]) -> None:
    wanted = set(product_ids)
    if not wanted:
        return
    found = set(db.execute(select(InventoryItem.id).where(InventoryItem.id.in_(wanted))).scalars().all())
    missing = sorted(wanted - found)
    if missing:
        raise NotFound('Product', missing[0])


def current_stock(db: Session, product_id: int) -> int:
    value = db.execute(select(InventoryItem.in_stock).where(InventoryItem.id == product_id)).scalar_one_or_none()
    if value is None:
        raise NotFound('Product', product_id)
    return value


def stock_levels(db: Session, product_ids: list[int]) -> dict[int, int]:
    if not product_ids:
        return {}
    rows = db.execute(
        select(InventoryItem.id, InventoryItem.in_stock).where(InventoryItem.id.in_(set(product_ids)))
    ).all()
    return {product_id: in_stock for product_id, in_stock in rows}


def apply_delta(db: Session, *, product_id: int, delta: int, floor: int | None = None) -> int:
    """Atomically add ``delta`` to ``in_stock`` and return the resulting balance.

    With ``floor`` set, the update only matches while the result stays at or
    above it; otherwise the balance is left alone and ``ValidationError`` is
    raised.
    """
    if delta == 0:
        raise ValidationError('Stock delta must be non-zero')

    stmt = update(InventoryItem).where(InventoryItem.id == product_id)
    if floor is not None:
        stmt = stmt.where(InventoryItem.in_stock + delta >= floor)
    result = db.execute(
        stmt.values(in_stock=InventoryItem.in_stock + delta, updated_at=func.now()).execution_options(
            synchronize_session=False
        )
    )
    if result.rowcount == 0:
        balance = current_stock(db, product_id)
        raise ValidationError(
            f'Adjustment of {delta} would take product {product_id} from {balance} below {floor}'
        )

    balance = current_stock(db, product_id)
    _expire_cached(db, product_id)
    return balance


def record_movement(
    db: Session,
    *,
    product_id: int,
    delta: int,
    balance_after: int,
    source_type: MovementSource,
    source_id: int,
    actor_id: int | None,
) -> InventoryMovement:
    movement = InventoryMovement(
        product_id=product_id,
        quantity_change=delta,
        balance_after=balance_after,
        source_type=source_type,
        source_id=source_id,
        actor_principal_id=actor_id,
    )
    db.add(movement)
    return movement


def increment(
    db: Session,
    *,
    product_id: int,
    quantity: int,
    source_type: MovementSource,
    source_id: int,
    actor_id: int | None,
) -> int:
    if quantity < 1:
        raise ValidationError('Increment quantity must be at least 1')
    balance = apply_delta(db, product_id=product_id, delta=quantity)
    record_movement(
        db,
        product_id=product_id,
        delta=quantity,
        balance_after=balance,
        source_type=source_type,
        source_id=source_id,
        actor_id=actor_id,
    )
    return balance


def decrement(
    db: Session,
    *,
    product_id: int,
    quantity: int,
    source_type: MovementSource,
    source_id: int,
    actor_id: int | None,
    floor: int | None = None,
) -> int:
    if quantity < 1:
        raise ValidationError('Decrement quantity must be at least 1')
    balance = apply_delta(db, product_id=product_id, delta=-quantity, floor=floor)
    record_movement(
        db,
        product_id=product_id,
        delta=-quantity,
        balance_after=balance,
        source_type=source_type,
        source_id=source_id,
        actor_id=actor_id,
    )
    if balance < 0:
        logger.warning('Product %s stock is negative after decrement: balance=%s', product_id, balance)
    return balance


def list_movements(
    db: Session,
    *,
    product_id: int | None = None,
    source_type: MovementSource | None = None,
    source_id: int | None = None,
) -> list[InventoryMovement]:
    query = select(InventoryMovement)
    if product_id is not None:
        query = query.where(InventoryMovement.product_id == product_id)
    if source_type is not None:
        query = query.where(InventoryMovement.source_type == source_type)
    if source_id is not None:
        query = query.where(InventoryMovement.source_id == source_id)
    return db.execute(query.order_by(InventoryMovement.id.asc())).scalars().all()


def _expire_cached(db: Session, product_id: int) -> None:
    # The UPDATE bypasses the identity map; drop any stale copy.
    for obj in list(db.identity_map.values()):
        if isinstance(obj, InventoryItem) and obj.id == product_id:
            db.expire(obj, ['in_stock', 'updated_at'])
