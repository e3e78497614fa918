from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from materials_ledger.auth import Principal
from materials_ledger.config import settings
from materials_ledger.models import AuditLog

CLAIM_INITIATED = 'claim_initiated'
CLAIM_APPROVED = 'claim_approved'
CLAIM_DENIED = 'claim_denied'
PO_CREATED = 'purchase_order_created'
PO_STATUS_CHANGED = 'purchase_order_status_changed'
PO_ITEMS_RECEIVED = 'purchase_order_items_received'
PO_QA_COMPLETED = 'purchase_order_qa_completed'
RETURN_INITIATED = 'return_initiated'
RETURN_APPROVED = 'return_approved'
RETURN_REJECTED = 'return_rejected'
STOCK_ADJUSTMENT_CREATED = 'stock_adjustment_created'


def log_audit(
    db: Session,
    *,
    actor: Principal | None,
    action: str,
    description: str,
    entity_type: str | None = None,
    entity_id: int | None = None,
    photo_ref: str | None = None,
    metadata: dict | None = None,
) -> AuditLog:
    entry = AuditLog(
        actor_principal_id=actor.id if actor else None,
        actor_name=actor.display_name if actor else None,
        actor_role=actor.role.value if actor else None,
        action=action,
        description=description,
        entity_type=entity_type,
        entity_id=entity_id,
        photo_ref=photo_ref,
        meta=metadata or {},
    )
    db.add(entry)
    return entry


def list_audit_logs(
    db: Session,
    *,
    action: str | None = None,
    actor_name: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = None,
) -> list[AuditLog]:
    query = select(AuditLog)
    if action and action != 'all':
        query = query.where(AuditLog.action == action)
    if actor_name:
        query = query.where(AuditLog.actor_name.ilike(f'%{actor_name.strip()}%'))
    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.where(AuditLog.entity_id == entity_id)
    if start:
        query = query.where(AuditLog.created_at >= start)
    if end:
        query = query.where(AuditLog.created_at <= end)
    query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit or settings.audit_page_size)
    return db.execute(query).scalars().all()


def audit_to_dict(entry: AuditLog) -> dict:
    return {
        'id': entry.id,
        'actor_principal_id': entry.actor_principal_id,
        'actor_name': entry.actor_name,
        'actor_role': entry.actor_role,
        'action': entry.action,
        'description': entry.description,
        'entity_type': entry.entity_type,
        'entity_id': entry.entity_id,
        'photo_ref': entry.photo_ref,
        'metadata': entry.meta,
        'created_at': entry.created_at,
    }
