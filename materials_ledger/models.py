from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
PK = BigInteger().with_variant(Integer(), 'sqlite')


class Base(DeclarativeBase):
    pass


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


class PrincipalRole(str, Enum):
    ADMIN = 'admin'
    WAREHOUSE = 'warehouse'
    ONSITE = 'onsite'
    PURCHASER = 'purchaser'
    INSPECTOR = 'inspector'


class ClaimStatus(str, Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    DENIED = 'denied'


class ClaimType(str, Enum):
    STANDARD = 'standard'
    EMERGENCY = 'emergency'


class PurchaseOrderStatus(str, Enum):
    DRAFT = 'draft'
    SENT = 'sent'
    PARTIAL = 'partial'
    IN_TRANSIT = 'in_transit'
    RECEIVED = 'received'
    CANCELLED = 'cancelled'


class ReturnStatus(str, Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class AdjustmentReason(str, Enum):
    DAMAGE = 'damage'
    LOST = 'lost'
    THEFT = 'theft'
    EXPIRED = 'expired'
    FOUND = 'found'
    CORRECTION = 'correction'
    OTHER = 'other'


class MovementSource(str, Enum):
    CLAIM = 'claim'
    RETURN = 'return'
    PO_RECEIPT = 'po_receipt'
    PO_QA = 'po_qa'
    ADJUSTMENT = 'adjustment'


class Principal(Base):
    __tablename__ = 'principals'

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(Text)
    role: Mapped[PrincipalRole] = mapped_column(_enum(PrincipalRole, 'principal_role'), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InventoryItem(Base):
    __tablename__ = 'inventory_items'

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    sku: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    in_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    allocated: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    safety_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=25, server_default='25')
    consumed_30d: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    projected_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def available(self) -> int:
        return self.in_stock - self.allocated


class InventoryMovement(Base):
    __tablename__ = 'inventory_movements'

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('inventory_items.id'), nullable=False, index=True)
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    source_type: Mapped[MovementSource] = mapped_column(_enum(MovementSource, 'movement_source'), nullable=False)
    source_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    actor_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Project(Base):
    __tablename__ = 'projects'

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ProjectMaterial(Base):
    __tablename__ = 'project_materials'
    __table_args__ = (
        UniqueConstraint('project_id', 'product_id', 'phase', name='project_materials_project_product_phase_uniq'),
        CheckConstraint('claimed_quantity >= 0', name='project_materials_claimed_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    project_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('inventory_items.id'), nullable=False)
    phase: Mapped[str] = mapped_column(String(64), nullable=False, default='general', server_default='general')
    required_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    claimed_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Claim(Base):
    __tablename__ = 'claims'

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    claim_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    project_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('projects.id'), nullable=False)
    status: Mapped[ClaimStatus] = mapped_column(
        _enum(ClaimStatus, 'claim_status'),
        nullable=False,
        default=ClaimStatus.PENDING,
        server_default='pending',
    )
    claim_type: Mapped[ClaimType] = mapped_column(
        _enum(ClaimType, 'claim_type'),
        nullable=False,
        default=ClaimType.STANDARD,
        server_default='standard',
    )
    emergency_reason: Mapped[str | None] = mapped_column(Text)
    photo_ref: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    denial_reason: Mapped[str | None] = mapped_column(Text)
    submitted_by_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    submitted_by_name: Mapped[str] = mapped_column(Text, nullable=False)
    processed_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    processed_by_name: Mapped[str | None] = mapped_column(Text)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    items: Mapped[list[ClaimItem]] = relationship(
        back_populates='claim', cascade='all, delete-orphan', order_by='ClaimItem.id'
    )


class ClaimItem(Base):
    __tablename__ = 'claim_items'
    __table_args__ = (
        CheckConstraint('quantity >= 1', name='claim_items_quantity_positive_ck'),
    )

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    claim_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('claims.id', ondelete='CASCADE'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('inventory_items.id'), nullable=False)
    phase: Mapped[str | None] = mapped_column(String(64))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    claim: Mapped[Claim] = relationship(back_populates='items')


class Vendor(Base):
    __tablename__ = 'vendors'

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_email: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PurchaseOrder(Base):
    __tablename__ = 'purchase_orders'

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    po_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    vendor_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('vendors.id'), nullable=False)
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        _enum(PurchaseOrderStatus, 'purchase_order_status'),
        nullable=False,
        default=PurchaseOrderStatus.DRAFT,
        server_default='draft',
    )
    notes: Mapped[str | None] = mapped_column(Text)
    expected_delivery_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_by_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    ordered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    good_quality_qty: Mapped[int | None] = mapped_column(Integer)
    bad_quality_qty: Mapped[int | None] = mapped_column(Integer)
    qa_photo_ref: Mapped[str | None] = mapped_column(Text)
    qa_completed_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    qa_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    items: Mapped[list[PurchaseOrderItem]] = relationship(
        back_populates='purchase_order', cascade='all, delete-orphan', order_by='PurchaseOrderItem.id'
    )

    @property
    def total_ordered(self) -> int:
        return sum(item.quantity_ordered for item in self.items)

    @property
    def total_received(self) -> int:
        return sum(item.quantity_received for item in self.items)

    @property
    def total_amount(self) -> Decimal:
        # Display only; not an accounting figure.
        return sum((item.unit_cost * item.quantity_ordered for item in self.items), Decimal('0.00'))


class PurchaseOrderItem(Base):
    __tablename__ = 'purchase_order_items'
    __table_args__ = (
        CheckConstraint('quantity_ordered >= 1', name='purchase_order_items_ordered_positive_ck'),
        CheckConstraint('quantity_received >= 0', name='purchase_order_items_received_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False
    )
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('inventory_items.id'), nullable=False)
    quantity_ordered: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_received: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    quantity_rejected: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    purchase_order: Mapped[PurchaseOrder] = relationship(back_populates='items')


class PurchaseOrderReceipt(Base):
    __tablename__ = 'purchase_order_receipts'

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False
    )
    received_by_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    status_before: Mapped[PurchaseOrderStatus] = mapped_column(
        _enum(PurchaseOrderStatus, 'purchase_order_status'), nullable=False
    )
    status_after: Mapped[PurchaseOrderStatus] = mapped_column(
        _enum(PurchaseOrderStatus, 'purchase_order_status'), nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    lines: Mapped[list[PurchaseOrderReceiptLine]] = relationship(
        cascade='all, delete-orphan', order_by='PurchaseOrderReceiptLine.id'
    )


class PurchaseOrderReceiptLine(Base):
    __tablename__ = 'purchase_order_receipt_lines'
    __table_args__ = (
        UniqueConstraint('receipt_id', 'purchase_order_item_id', name='purchase_order_receipt_lines_receipt_item_uniq'),
    )

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    receipt_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_order_receipts.id', ondelete='CASCADE'), nullable=False
    )
    purchase_order_item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_order_items.id', ondelete='CASCADE'), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    received_total_after: Mapped[int] = mapped_column(Integer, nullable=False)


class Return(Base):
    __tablename__ = 'returns'

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    return_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    project_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('projects.id'), nullable=False)
    claim_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('claims.id', ondelete='SET NULL'))
    status: Mapped[ReturnStatus] = mapped_column(
        _enum(ReturnStatus, 'return_status'),
        nullable=False,
        default=ReturnStatus.PENDING,
        server_default='pending',
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    photo_ref: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    submitted_by_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    submitted_by_name: Mapped[str] = mapped_column(Text, nullable=False)
    processed_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    processed_by_name: Mapped[str | None] = mapped_column(Text)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    items: Mapped[list[ReturnItem]] = relationship(
        back_populates='return_record', cascade='all, delete-orphan', order_by='ReturnItem.id'
    )


class ReturnItem(Base):
    __tablename__ = 'return_items'
    __table_args__ = (
        CheckConstraint('quantity >= 1', name='return_items_quantity_positive_ck'),
    )

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    return_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('returns.id', ondelete='CASCADE'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('inventory_items.id'), nullable=False)
    phase: Mapped[str | None] = mapped_column(String(64))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    return_record: Mapped[Return] = relationship(back_populates='items')


class StockAdjustment(Base):
    __tablename__ = 'stock_adjustments'
    __table_args__ = (
        CheckConstraint('quantity_change <> 0', name='stock_adjustments_non_zero_ck'),
    )

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    adjustment_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('inventory_items.id'), nullable=False)
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[AdjustmentReason] = mapped_column(_enum(AdjustmentReason, 'adjustment_reason'), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    previous_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    new_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    admin_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    admin_name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    actor_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    actor_name: Mapped[str | None] = mapped_column(Text)
    actor_role: Mapped[str | None] = mapped_column(String(32))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(64))
    entity_id: Mapped[int | None] = mapped_column(BigInteger)
    photo_ref: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Notification(Base):
    __tablename__ = 'notifications'

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    recipient_principal_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('principals.id', ondelete='CASCADE'), nullable=False, index=True
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    notification_type: Mapped[str] = mapped_column(String(64), nullable=False)
    related_claim_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('claims.id', ondelete='SET NULL'))
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class NumberSequence(Base):
    __tablename__ = 'number_sequences'

    kind: Mapped[str] = mapped_column(String(32), primary_key=True)
    next_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1, server_default='1')
