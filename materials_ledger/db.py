from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from materials_ledger.config import settings
from materials_ledger.services.errors import Conflict


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_engine(settings.database_url_normalized, echo=settings.database_echo, pool_pre_ping=True)


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker[Session]:
    return sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


def SessionLocal() -> Session:
    return get_session_factory()()


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(session_factory=None) -> Iterator[Session]:
    """Run one core operation in its own transaction.

    Commits when the block exits cleanly and rolls back on any exception. A
    database-level concurrency failure surfaces as ``Conflict`` so callers can
    retry the whole operation.
    """
    factory = session_factory or SessionLocal
    db = factory()
    try:
        yield db
        db.commit()
    except OperationalError as exc:
        db.rollback()
        raise Conflict('Transaction failed due to a concurrent update; retry the operation') from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
