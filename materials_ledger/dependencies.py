from datetime import date, datetime, time, timezone

from fastapi import HTTPException
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from materials_ledger.services.errors import Conflict, InvalidTransition, LedgerError, NotFound, ValidationError


def http_error(exc: LedgerError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidTransition):
        return HTTPException(
            status_code=409,
            detail={'message': str(exc), 'current': exc.current, 'target': exc.target, 'retryable': False},
        )
    if isinstance(exc, Conflict):
        return HTTPException(status_code=409, detail={'message': str(exc), 'retryable': True})
    return HTTPException(status_code=400, detail=str(exc))


def commit(db: Session) -> None:
    try:
        db.commit()
    except OperationalError as exc:
        db.rollback()
        raise Conflict('Transaction failed due to a concurrent update; retry the operation') from exc


def parse_date_range(from_raw: str | None, to_raw: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        from_date = date.fromisoformat(from_raw) if from_raw else None
        to_date = date.fromisoformat(to_raw) if to_raw else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid date filter') from exc
    start = datetime.combine(from_date, time.min, tzinfo=timezone.utc) if from_date else None
    end = datetime.combine(to_date, time.max, tzinfo=timezone.utc) if to_date else None
    return start, end
