"""Read-only aggregates for dashboards.

None of these run inside the write transactions; they read whatever is
committed and are advisory only.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from materials_ledger.config import settings
from materials_ledger.models import (
    AdjustmentReason,
    InventoryItem,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderStatus,
    StockAdjustment,
)

CENT = Decimal('0.01')

HEALTHY = 'healthy'
REORDER = 'reorder'
CRITICAL = 'critical'

COMMITTED_STATUSES = (PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.SENT)


@dataclass(frozen=True)
class StockHealth:
    product_id: int
    sku: str
    product_name: str
    in_stock: int
    allocated: int
    safety_stock: int
    days_left: Decimal | None
    status: str


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


def system_leakage(
    db: Session,
    *,
    reasons: list[str] | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> Decimal:
    reason_values = [AdjustmentReason(reason) for reason in (reasons or settings.leakage_reasons)]
    query = (
        select(func.sum(-StockAdjustment.quantity_change * InventoryItem.unit_cost))
        .select_from(StockAdjustment)
        .join(InventoryItem, InventoryItem.id == StockAdjustment.product_id)
        .where(StockAdjustment.quantity_change < 0, StockAdjustment.reason.in_(reason_values))
    )
    if start:
        query = query.where(StockAdjustment.created_at >= start)
    if end:
        query = query.where(StockAdjustment.created_at <= end)
    return _money(db.execute(query).scalar_one())


def inventory_value(db: Session) -> Decimal:
    total = db.execute(
        select(func.sum(InventoryItem.in_stock * InventoryItem.unit_cost)).where(InventoryItem.in_stock > 0)
    ).scalar_one()
    return _money(total)


def capital_committed(db: Session) -> Decimal:
    total = db.execute(
        select(func.sum(PurchaseOrderItem.quantity_ordered * PurchaseOrderItem.unit_cost))
        .join(PurchaseOrder, PurchaseOrder.id == PurchaseOrderItem.purchase_order_id)
        .where(PurchaseOrder.status.in_(COMMITTED_STATUSES))
    ).scalar_one()
    return _money(total)


def days_left(projected_stock: int, consumed_30d: int) -> Decimal | None:
    if consumed_30d <= 0:
        return None
    daily = Decimal(consumed_30d) / Decimal(30)
    return (Decimal(projected_stock) / daily).quantize(Decimal('0.1'))


def classify_stock(
    item: InventoryItem,
    *,
    critical_days: int | None = None,
    reorder_days: int | None = None,
) -> StockHealth:
    critical_days = settings.stock_critical_days if critical_days is None else critical_days
    reorder_days = settings.stock_reorder_days if reorder_days is None else reorder_days
    remaining = days_left(item.projected_stock, item.consumed_30d)

    if item.in_stock < 0 or item.allocated > item.in_stock or (remaining is not None and remaining < critical_days):
        status = CRITICAL
    elif (remaining is not None and remaining < reorder_days) or item.in_stock <= item.safety_stock:
        status = REORDER
    else:
        status = HEALTHY

    return StockHealth(
        product_id=item.id,
        sku=item.sku,
        product_name=item.product_name,
        in_stock=item.in_stock,
        allocated=item.allocated,
        safety_stock=item.safety_stock,
        days_left=remaining,
        status=status,
    )


def stock_health(db: Session, *, status: str | None = None) -> list[StockHealth]:
    items = db.execute(select(InventoryItem).order_by(InventoryItem.product_name.asc(), InventoryItem.id.asc())).scalars().all()
    rows = [classify_stock(item) for item in items]
    if status:
        rows = [row for row in rows if row.status == status]
    return rows


def dashboard_summary(db: Session) -> dict:
    health = stock_health(db)
    counts = Counter(row.status for row in health)
    return {
        'products': len(health),
        'healthy': counts.get(HEALTHY, 0),
        'reorder': counts.get(REORDER, 0),
        'critical': counts.get(CRITICAL, 0),
        'inventory_value': str(inventory_value(db)),
        'capital_committed': str(capital_committed(db)),
        'system_leakage': str(system_leakage(db)),
    }
