from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from materials_ledger.auth import Principal
from materials_ledger.models import (
    MovementSource,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderReceipt,
    PurchaseOrderReceiptLine,
    PurchaseOrderStatus,
    Vendor,
)
from materials_ledger.services import audit_service, inventory_ledger
from materials_ledger.services.errors import (
    OVER_DELIVERY,
    InvalidTransition,
    LedgerWarning,
    NotFound,
    ValidationError,
)
from materials_ledger.services.numbering import PURCHASE_ORDER, NumberGenerator
from materials_ledger.services.provider_factory import get_number_generator
from materials_ledger.services.transitions import (
    QA_STATUSES,
    RECEIVABLE_STATUSES,
    derive_receiving_status,
    ensure_transition,
    sources_for,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PurchaseOrderLineInput:
    product_id: int
    quantity_ordered: int
    unit_cost: Decimal | str | int = Decimal('0.00')


@dataclass(frozen=True)
class ReceiveLineInput:
    item_id: int
    quantity: int


@dataclass
class ReceiveResult:
    purchase_order: PurchaseOrder
    receipt: PurchaseOrderReceipt
    status: PurchaseOrderStatus
    warnings: list[LedgerWarning] = field(default_factory=list)


@dataclass
class QAResult:
    purchase_order: PurchaseOrder
    warnings: list[LedgerWarning] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _parse_cost(value: Decimal | str | int, *, product_id: int) -> Decimal:
    try:
        cost = Decimal(str(value)).quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f'Invalid unit cost for product {product_id}') from exc
    if cost < 0:
        raise ValidationError(f'Unit cost for product {product_id} cannot be negative')
    return cost


def _is_whole(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def get_purchase_order(db: Session, po_id: int) -> PurchaseOrder:
    po = db.execute(
        select(PurchaseOrder)
        .options(selectinload(PurchaseOrder.items))
        .where(PurchaseOrder.id == po_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if po is None:
        raise NotFound('PurchaseOrder', po_id)
    return po


def list_purchase_orders(
    db: Session,
    *,
    status: PurchaseOrderStatus | None = None,
    vendor_id: int | None = None,
    limit: int = 100,
) -> list[PurchaseOrder]:
    query = select(PurchaseOrder).options(selectinload(PurchaseOrder.items))
    if status is not None:
        query = query.where(PurchaseOrder.status == status)
    if vendor_id is not None:
        query = query.where(PurchaseOrder.vendor_id == vendor_id)
    return db.execute(
        query.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc()).limit(limit)
    ).scalars().all()


def list_receipts(db: Session, *, po_id: int) -> list[PurchaseOrderReceipt]:
    return db.execute(
        select(PurchaseOrderReceipt)
        .options(selectinload(PurchaseOrderReceipt.lines))
        .where(PurchaseOrderReceipt.purchase_order_id == po_id)
        .order_by(PurchaseOrderReceipt.id.asc())
    ).scalars().all()


def create_purchase_order(
    db: Session,
    *,
    actor: Principal,
    vendor_id: int,
    lines: list[PurchaseOrderLineInput],
    notes: str | None = None,
    expected_delivery_date: datetime | None = None,
    numbers: NumberGenerator | None = None,
) -> PurchaseOrder:
    vendor = db.execute(select(Vendor).where(Vendor.id == vendor_id)).scalar_one_or_none()
    if vendor is None:
        raise NotFound('Vendor', vendor_id)
    if not vendor.active:
        raise ValidationError(f'Vendor {vendor.name} is inactive')
    if not lines:
        raise ValidationError('A purchase order needs at least one line')

    items: list[PurchaseOrderItem] = []
    for line in lines:
        if not _is_whole(line.quantity_ordered) or line.quantity_ordered < 1:
            raise ValidationError(f'Ordered quantity for product {line.product_id} must be at least 1')
        items.append(
            PurchaseOrderItem(
                product_id=line.product_id,
                quantity_ordered=line.quantity_ordered,
                quantity_received=0,
                quantity_rejected=0,
                unit_cost=_parse_cost(line.unit_cost, product_id=line.product_id),
            )
        )
    inventory_ledger.ensure_products_exist(db, [line.product_id for line in lines])

    generator = numbers or get_number_generator()
    po = PurchaseOrder(
        po_number=generator.next_number(db, kind=PURCHASE_ORDER),
        vendor_id=vendor_id,
        status=PurchaseOrderStatus.DRAFT,
        notes=(notes or '').strip() or None,
        expected_delivery_date=expected_delivery_date,
        created_by_principal_id=actor.id,
        items=items,
    )
    db.add(po)
    db.flush()

    audit_service.log_audit(
        db,
        actor=actor,
        action=audit_service.PO_CREATED,
        description=f'{actor.display_name} created purchase order {po.po_number} for {vendor.name}',
        entity_type='purchase_order',
        entity_id=po.id,
        metadata={
            'po_number': po.po_number,
            'vendor_id': vendor_id,
            'total_ordered': po.total_ordered,
            'total_amount': str(po.total_amount),
        },
    )
    db.flush()
    logger.info('Purchase order created: po=%s vendor=%s lines=%s', po.po_number, vendor_id, len(items))
    return po


def _current_status(db: Session, po_id: int) -> PurchaseOrderStatus:
    status = db.execute(select(PurchaseOrder.status).where(PurchaseOrder.id == po_id)).scalar_one_or_none()
    if status is None:
        raise NotFound('PurchaseOrder', po_id)
    return status


def _transition(
    db: Session,
    *,
    po_id: int,
    actor: Principal,
    target: PurchaseOrderStatus,
    **values,
) -> PurchaseOrder:
    po = get_purchase_order(db, po_id)
    current = PurchaseOrderStatus(po.status)
    ensure_transition('PurchaseOrder', po_id, current, target)

    result = db.execute(
        update(PurchaseOrder)
        .where(PurchaseOrder.id == po_id, PurchaseOrder.status.in_(sources_for(target)))
        .values(status=target, updated_at=_now(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InvalidTransition('PurchaseOrder', po_id, _current_status(db, po_id).value, target.value)

    audit_service.log_audit(
        db,
        actor=actor,
        action=audit_service.PO_STATUS_CHANGED,
        description=f'{actor.display_name} moved purchase order {po.po_number} from {current.value} to {target.value}',
        entity_type='purchase_order',
        entity_id=po.id,
        metadata={'po_number': po.po_number, 'from': current.value, 'to': target.value},
    )
    db.flush()
    logger.info('Purchase order %s: %s -> %s', po.po_number, current.value, target.value)
    return get_purchase_order(db, po_id)


def send_purchase_order(db: Session, *, po_id: int, actor: Principal) -> PurchaseOrder:
    return _transition(db, po_id=po_id, actor=actor, target=PurchaseOrderStatus.SENT, ordered_at=_now())


def mark_in_transit(db: Session, *, po_id: int, actor: Principal) -> PurchaseOrder:
    return _transition(db, po_id=po_id, actor=actor, target=PurchaseOrderStatus.IN_TRANSIT)


def cancel_purchase_order(db: Session, *, po_id: int, actor: Principal) -> PurchaseOrder:
    return _transition(db, po_id=po_id, actor=actor, target=PurchaseOrderStatus.CANCELLED, cancelled_at=_now())


def receive_items(
    db: Session,
    *,
    po_id: int,
    actor: Principal,
    lines: list[ReceiveLineInput],
    notes: str | None = None,
) -> ReceiveResult:
    """Record a delivery against a purchase order.

    Every line is validated before anything is written, so a bad line leaves
    the order, its items and the ledger untouched. Over-delivery is accepted
    and reported as a warning.
    """
    po = get_purchase_order(db, po_id)
    if not lines:
        raise ValidationError('At least one receiving line is required')

    items_by_id = {item.id: item for item in po.items}
    quantities: dict[int, int] = {}
    for line in lines:
        if not _is_whole(line.quantity) or line.quantity < 1:
            raise ValidationError(f'Received quantity for item {line.item_id} must be at least 1')
        if line.item_id not in items_by_id:
            raise ValidationError(f'Item {line.item_id} does not belong to purchase order {po.po_number}')
        quantities[line.item_id] = quantities.get(line.item_id, 0) + line.quantity

    if PurchaseOrderStatus(po.status) not in RECEIVABLE_STATUSES:
        raise InvalidTransition('PurchaseOrder', po_id, PurchaseOrderStatus(po.status).value, 'received')

    # Claims the order row for this transaction; concurrent receivers queue here.
    locked = db.execute(
        update(PurchaseOrder)
        .where(PurchaseOrder.id == po_id, PurchaseOrder.status.in_(RECEIVABLE_STATUSES))
        .values(updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    if locked.rowcount == 0:
        raise InvalidTransition('PurchaseOrder', po_id, _current_status(db, po_id).value, 'received')
    status_before = _current_status(db, po_id)

    receipt = PurchaseOrderReceipt(
        purchase_order_id=po_id,
        received_by_principal_id=actor.id,
        status_before=status_before,
        status_after=status_before,
        notes=(notes or '').strip() or None,
    )
    db.add(receipt)
    db.flush()

    warnings: list[LedgerWarning] = []
    for item_id, quantity in quantities.items():
        item = items_by_id[item_id]
        db.execute(
            update(PurchaseOrderItem)
            .where(PurchaseOrderItem.id == item_id)
            .values(quantity_received=PurchaseOrderItem.quantity_received + quantity, updated_at=_now())
            .execution_options(synchronize_session=False)
        )
        received_after, ordered = db.execute(
            select(PurchaseOrderItem.quantity_received, PurchaseOrderItem.quantity_ordered).where(
                PurchaseOrderItem.id == item_id
            )
        ).one()
        receipt.lines.append(
            PurchaseOrderReceiptLine(purchase_order_item_id=item_id, quantity=quantity, received_total_after=received_after)
        )
        inventory_ledger.increment(
            db,
            product_id=item.product_id,
            quantity=quantity,
            source_type=MovementSource.PO_RECEIPT,
            source_id=receipt.id,
            actor_id=actor.id,
        )
        if received_after > ordered:
            warnings.append(
                LedgerWarning(
                    code=OVER_DELIVERY,
                    message=f'Item {item_id} received {received_after} against {ordered} ordered',
                    product_id=item.product_id,
                    item_id=item_id,
                )
            )

    total_ordered, total_received = db.execute(
        select(
            func.coalesce(func.sum(PurchaseOrderItem.quantity_ordered), 0),
            func.coalesce(func.sum(PurchaseOrderItem.quantity_received), 0),
        ).where(PurchaseOrderItem.purchase_order_id == po_id)
    ).one()
    new_status = derive_receiving_status(total_ordered, total_received, status_before)
    ensure_transition('PurchaseOrder', po_id, status_before, new_status)

    values: dict = {'status': new_status, 'updated_at': _now()}
    if new_status == PurchaseOrderStatus.RECEIVED:
        values['received_at'] = _now()
    db.execute(
        update(PurchaseOrder)
        .where(PurchaseOrder.id == po_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    receipt.status_after = new_status

    for warning in warnings:
        logger.warning('Purchase order %s receiving warning %s: %s', po.po_number, warning.code, warning.message)

    audit_service.log_audit(
        db,
        actor=actor,
        action=audit_service.PO_ITEMS_RECEIVED,
        description=(
            f'{actor.display_name} received {sum(quantities.values())} units on {po.po_number} '
            f'({status_before.value} -> {new_status.value})'
        ),
        entity_type='purchase_order',
        entity_id=po.id,
        metadata={
            'po_number': po.po_number,
            'receipt_id': receipt.id,
            'lines': [{'item_id': item_id, 'quantity': quantity} for item_id, quantity in quantities.items()],
            'total_ordered': total_ordered,
            'total_received': total_received,
            'warnings': [warning.code for warning in warnings],
        },
    )
    db.flush()
    logger.info(
        'Purchase order received: po=%s status=%s received=%s/%s',
        po.po_number,
        new_status.value,
        total_received,
        total_ordered,
    )
    return ReceiveResult(
        purchase_order=get_purchase_order(db, po_id),
        receipt=receipt,
        status=new_status,
        warnings=warnings,
    )


def complete_qa(
    db: Session,
    *,
    po_id: int,
    actor: Principal,
    good_qty: int,
    bad_qty: int,
    photo_ref: str | None,
) -> QAResult:
    if not _is_whole(good_qty) or not _is_whole(bad_qty) or good_qty < 0 or bad_qty < 0:
        raise ValidationError('Good and bad quantities must be whole numbers of zero or more')
    photo = (photo_ref or '').strip()
    if not photo:
        raise ValidationError('A photo reference is required to complete QA')

    po = get_purchase_order(db, po_id)
    total_ordered = po.total_ordered
    if good_qty + bad_qty != total_ordered:
        raise ValidationError(
            f'Good ({good_qty}) plus bad ({bad_qty}) must equal the ordered total ({total_ordered})'
        )

    current = PurchaseOrderStatus(po.status)
    if current not in QA_STATUSES or po.total_received > 0:
        raise InvalidTransition('PurchaseOrder', po_id, current.value, PurchaseOrderStatus.RECEIVED.value)
    ensure_transition('PurchaseOrder', po_id, current, PurchaseOrderStatus.RECEIVED)

    already_received = (
        select(PurchaseOrderItem.id)
        .where(PurchaseOrderItem.purchase_order_id == po_id, PurchaseOrderItem.quantity_received > 0)
        .exists()
    )
    now = _now()
    result = db.execute(
        update(PurchaseOrder)
        .where(PurchaseOrder.id == po_id, PurchaseOrder.status.in_(QA_STATUSES), ~already_received)
        .values(
            status=PurchaseOrderStatus.RECEIVED,
            good_quality_qty=good_qty,
            bad_quality_qty=bad_qty,
            qa_photo_ref=photo,
            qa_completed_by_principal_id=actor.id,
            qa_completed_at=now,
            received_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InvalidTransition(
            'PurchaseOrder', po_id, _current_status(db, po_id).value, PurchaseOrderStatus.RECEIVED.value
        )

    remaining_good = good_qty
    for item in po.items:
        credited = min(remaining_good, item.quantity_ordered)
        remaining_good -= credited
        db.execute(
            update(PurchaseOrderItem)
            .where(PurchaseOrderItem.id == item.id, PurchaseOrderItem.quantity_received == 0)
            .values(
                quantity_received=item.quantity_ordered,
                quantity_rejected=item.quantity_ordered - credited,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if credited:
            inventory_ledger.increment(
                db,
                product_id=item.product_id,
                quantity=credited,
                source_type=MovementSource.PO_QA,
                source_id=po.id,
                actor_id=actor.id,
            )

    audit_service.log_audit(
        db,
        actor=actor,
        action=audit_service.PO_QA_COMPLETED,
        description=f'{actor.display_name} completed QA on {po.po_number}: {good_qty} good, {bad_qty} bad',
        entity_type='purchase_order',
        entity_id=po.id,
        photo_ref=photo,
        metadata={
            'po_number': po.po_number,
            'good_quality_qty': good_qty,
            'bad_quality_qty': bad_qty,
            'total_ordered': total_ordered,
        },
    )
    db.flush()
    logger.info('Purchase order QA completed: po=%s good=%s bad=%s', po.po_number, good_qty, bad_qty)
    return QAResult(purchase_order=get_purchase_order(db, po_id))


def purchase_order_to_dict(po: PurchaseOrder) -> dict:
    return {
        'id': po.id,
        'po_number': po.po_number,
        'vendor_id': po.vendor_id,
        'status': PurchaseOrderStatus(po.status).value,
        'notes': po.notes,
        'expected_delivery_date': po.expected_delivery_date,
        'ordered_at': po.ordered_at,
        'received_at': po.received_at,
        'cancelled_at': po.cancelled_at,
        'good_quality_qty': po.good_quality_qty,
        'bad_quality_qty': po.bad_quality_qty,
        'qa_photo_ref': po.qa_photo_ref,
        'qa_completed_at': po.qa_completed_at,
        'total_ordered': po.total_ordered,
        'total_received': po.total_received,
        'total_amount': str(po.total_amount),
        'items': [
            {
                'id': item.id,
                'product_id': item.product_id,
                'quantity_ordered': item.quantity_ordered,
                'quantity_received': item.quantity_received,
                'quantity_rejected': item.quantity_rejected,
                'unit_cost': str(item.unit_cost),
            }
            for item in po.items
        ],
    }


def receipt_to_dict(receipt: PurchaseOrderReceipt) -> dict:
    return {
        'id': receipt.id,
        'purchase_order_id': receipt.purchase_order_id,
        'received_by_principal_id': receipt.received_by_principal_id,
        'status_before': PurchaseOrderStatus(receipt.status_before).value,
        'status_after': PurchaseOrderStatus(receipt.status_after).value,
        'notes': receipt.notes,
        'created_at': receipt.created_at,
        'lines': [
            {
                'purchase_order_item_id': line.purchase_order_item_id,
                'quantity': line.quantity,
                'received_total_after': line.received_total_after,
            }
            for line in receipt.lines
        ],
    }
