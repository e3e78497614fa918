"""Error taxonomy and warning values shared by the workflow services."""

from __future__ import annotations

from dataclasses import dataclass


class LedgerError(Exception):
    """Base class for every error raised by the reconciliation core."""


class ValidationError(LedgerError, ValueError):
    """Raised for malformed input. Nothing has been written when this is raised."""


class NotFound(LedgerError, LookupError):
    """Raised when a referenced aggregate or product does not exist."""

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f'{entity} {entity_id} not found')


class InvalidTransition(LedgerError):
    """Raised when an aggregate is not in the source state an operation requires.

    Distinct from ``ValidationError``: the input was fine, but another actor
    (or an earlier call) has already moved the aggregate on.
    """

    def __init__(self, entity: str, entity_id: object, current: str, target: str):
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {entity} {entity_id} from '{current}' to '{target}'")


class Conflict(LedgerError):
    """Raised when a concurrent write won the race. Safe to retry from scratch."""


@dataclass(frozen=True)
class LedgerWarning:
    code: str
    message: str
    product_id: int | None = None
    item_id: int | None = None

    def as_dict(self) -> dict:
        return {
            'code': self.code,
            'message': self.message,
            'product_id': self.product_id,
            'item_id': self.item_id,
        }


OVER_DELIVERY = 'over_delivery'
BOM_DRIFT = 'bom_drift'
STOCK_SHORTFALL = 'stock_shortfall'
CLAIMED_CLAMPED = 'claimed_clamped'
MATERIAL_CREATED = 'material_created'
