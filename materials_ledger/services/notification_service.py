from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from materials_ledger.config import settings
from materials_ledger.models import Notification, Principal, PrincipalRole
from materials_ledger.services.errors import NotFound


def active_recipient_ids(db: Session, *, role: PrincipalRole) -> list[int]:
    return db.execute(
        select(Principal.id).where(Principal.role == role, Principal.active.is_(True)).order_by(Principal.id.asc())
    ).scalars().all()


def notify(
    db: Session,
    *,
    recipient_ids: list[int],
    message: str,
    notification_type: str,
    related_claim_id: int | None = None,
) -> list[Notification]:
    rows = [
        Notification(
            recipient_principal_id=recipient_id,
            message=message,
            notification_type=notification_type,
            related_claim_id=related_claim_id,
            is_read=False,
        )
        for recipient_id in dict.fromkeys(recipient_ids)
    ]
    db.add_all(rows)
    return rows


def notify_role(
    db: Session,
    *,
    role: PrincipalRole,
    message: str,
    notification_type: str,
    related_claim_id: int | None = None,
) -> list[Notification]:
    return notify(
        db,
        recipient_ids=active_recipient_ids(db, role=role),
        message=message,
        notification_type=notification_type,
        related_claim_id=related_claim_id,
    )


def list_notifications(
    db: Session,
    *,
    recipient_id: int,
    unread_only: bool = False,
    limit: int | None = None,
) -> list[Notification]:
    query = select(Notification).where(Notification.recipient_principal_id == recipient_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    query = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(
        limit or settings.notification_page_size
    )
    return db.execute(query).scalars().all()


def unread_count(db: Session, *, recipient_id: int) -> int:
    return db.execute(
        select(func.count(Notification.id)).where(
            Notification.recipient_principal_id == recipient_id,
            Notification.is_read.is_(False),
        )
    ).scalar_one()


def mark_read(db: Session, *, notification_id: int, recipient_id: int) -> Notification:
    notification = db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.recipient_principal_id == recipient_id,
        )
    ).scalar_one_or_none()
    if notification is None:
        raise NotFound('Notification', notification_id)
    notification.is_read = True
    db.flush()
    return notification


def mark_all_read(db: Session, *, recipient_id: int) -> int:
    result = db.execute(
        update(Notification)
        .where(
            Notification.recipient_principal_id == recipient_id,
            Notification.is_read.is_(False),
        )
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    db.flush()
    return result.rowcount


def notification_to_dict(notification: Notification) -> dict:
    return {
        'id': notification.id,
        'recipient_principal_id': notification.recipient_principal_id,
        'message': notification.message,
        'notification_type': notification.notification_type,
        'related_claim_id': notification.related_claim_id,
        'is_read': notification.is_read,
        'created_at': notification.created_at,
    }
