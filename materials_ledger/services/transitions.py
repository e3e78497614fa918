"""Allowed status transitions for each aggregate, checked in one place."""

from __future__ import annotations

from enum import Enum

from materials_ledger.models import ClaimStatus, PurchaseOrderStatus, ReturnStatus
from materials_ledger.services.errors import InvalidTransition

CLAIM_TRANSITIONS: dict[ClaimStatus, frozenset[ClaimStatus]] = {
    ClaimStatus.PENDING: frozenset({ClaimStatus.APPROVED, ClaimStatus.DENIED}),
    ClaimStatus.APPROVED: frozenset(),
    ClaimStatus.DENIED: frozenset(),
}

PURCHASE_ORDER_TRANSITIONS: dict[PurchaseOrderStatus, frozenset[PurchaseOrderStatus]] = {
    PurchaseOrderStatus.DRAFT: frozenset({PurchaseOrderStatus.SENT, PurchaseOrderStatus.CANCELLED}),
    PurchaseOrderStatus.SENT: frozenset(
        {
            PurchaseOrderStatus.IN_TRANSIT,
            PurchaseOrderStatus.PARTIAL,
            PurchaseOrderStatus.RECEIVED,
            PurchaseOrderStatus.CANCELLED,
        }
    ),
    PurchaseOrderStatus.IN_TRANSIT: frozenset(
        {PurchaseOrderStatus.PARTIAL, PurchaseOrderStatus.RECEIVED, PurchaseOrderStatus.CANCELLED}
    ),
    PurchaseOrderStatus.PARTIAL: frozenset(
        {PurchaseOrderStatus.IN_TRANSIT, PurchaseOrderStatus.RECEIVED, PurchaseOrderStatus.CANCELLED}
    ),
    PurchaseOrderStatus.RECEIVED: frozenset(),
    PurchaseOrderStatus.CANCELLED: frozenset(),
}

RETURN_TRANSITIONS: dict[ReturnStatus, frozenset[ReturnStatus]] = {
    ReturnStatus.PENDING: frozenset({ReturnStatus.APPROVED, ReturnStatus.REJECTED}),
    ReturnStatus.APPROVED: frozenset(),
    ReturnStatus.REJECTED: frozenset(),
}

# Statuses in which receiving events are accepted.
RECEIVABLE_STATUSES = frozenset(
    {PurchaseOrderStatus.SENT, PurchaseOrderStatus.IN_TRANSIT, PurchaseOrderStatus.PARTIAL}
)
QA_STATUSES = frozenset({PurchaseOrderStatus.SENT, PurchaseOrderStatus.IN_TRANSIT})

_TABLES: dict[type[Enum], dict] = {
    ClaimStatus: CLAIM_TRANSITIONS,
    PurchaseOrderStatus: PURCHASE_ORDER_TRANSITIONS,
    ReturnStatus: RETURN_TRANSITIONS,
}


def can_transition(current: Enum, target: Enum) -> bool:
    table = _TABLES[type(current)]
    return target in table[current]


def sources_for(target: Enum) -> frozenset:
    table = _TABLES[type(target)]
    return frozenset(state for state, targets in table.items() if target in targets)


def is_terminal(status: Enum) -> bool:
    return not _TABLES[type(status)][status]


def ensure_transition(entity: str, entity_id: object, current: Enum, target: Enum) -> None:
    if current == target and is_terminal(current):
        raise InvalidTransition(entity, entity_id, current.value, target.value)
    if current != target and not can_transition(current, target):
        raise InvalidTransition(entity, entity_id, current.value, target.value)


def derive_receiving_status(
    total_ordered: int, total_received: int, current: PurchaseOrderStatus
) -> PurchaseOrderStatus:
    if total_ordered > 0 and total_received >= total_ordered:
        return PurchaseOrderStatus.RECEIVED
    if total_received > 0:
        return PurchaseOrderStatus.PARTIAL
    return PurchaseOrderStatus(current)
