from __future__ import annotations

from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from materials_ledger.models import NumberSequence

CLAIM = 'claim'
PURCHASE_ORDER = 'purchase_order'
RETURN = 'return'
ADJUSTMENT = 'adjustment'

PREFIXES = {
    CLAIM: 'CLM',
    PURCHASE_ORDER: 'PO',
    RETURN: 'RET',
    ADJUSTMENT: 'ADJ',
}


def format_number(kind: str, value: int) -> str:
    return f'{PREFIXES[kind]}-{value:06d}'


class NumberGenerator(Protocol):
    def next_number(self, db: Session, *, kind: str) -> str: ...


class DatabaseNumberGenerator:
    """Hands out numbers from the ``number_sequences`` table.

    The increment is one conditional UPDATE, so two transactions asking for
    the same kind serialize on the sequence row and never share a value.
    """

    def next_number(self, db: Session, *, kind: str) -> str:
        if kind not in PREFIXES:
            raise ValueError(f'Unknown number kind: {kind}')
        result = db.execute(
            update(NumberSequence)
            .where(NumberSequence.kind == kind)
            .values(next_value=NumberSequence.next_value + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.add(NumberSequence(kind=kind, next_value=2))
            db.flush()
            return format_number(kind, 1)
        issued = db.execute(select(NumberSequence.next_value).where(NumberSequence.kind == kind)).scalar_one() - 1
        return format_number(kind, issued)


class MemoryNumberGenerator:
    def __init__(self) -> None:
        self.counters: dict[str, int] = {}

    def next_number(self, db: Session, *, kind: str) -> str:
        if kind not in PREFIXES:
            raise ValueError(f'Unknown number kind: {kind}')
        value = self.counters.get(kind, 0) + 1
        self.counters[kind] = value
        return format_number(kind, value)
