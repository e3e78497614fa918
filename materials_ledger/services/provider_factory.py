from __future__ import annotations

from functools import lru_cache

from materials_ledger.config import settings
from materials_ledger.services.numbering import DatabaseNumberGenerator, MemoryNumberGenerator, NumberGenerator


@lru_cache(maxsize=1)
def get_number_generator() -> NumberGenerator:
    provider = settings.number_generator.strip().lower()
    if provider == 'memory':
        return MemoryNumberGenerator()
    return DatabaseNumberGenerator()
