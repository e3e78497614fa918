from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from materials_ledger.db import get_db
from materials_ledger.models import Principal as PrincipalModel
from materials_ledger.models import PrincipalRole as Role


@dataclass(frozen=True)
class Principal:
    id: int
    username: str
    role: Role
    active: bool = True

    @property
    def display_name(self) -> str:
        return self.username


def principal_from_model(row: PrincipalModel) -> Principal:
    return Principal(
        id=row.id,
        username=row.display_name or row.username,
        role=Role(row.role),
        active=row.active,
    )


def get_current_principal(
    x_actor_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> Principal:
    if not x_actor_id or not x_actor_id.strip().isdigit():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    row = db.execute(select(PrincipalModel).where(PrincipalModel.id == int(x_actor_id))).scalar_one_or_none()
    if row is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    principal = principal_from_model(row)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def is_admin_role(role: Role) -> bool:
    return role == Role.ADMIN


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        # Admins may act in every role.
        if principal.role not in allowed and not is_admin_role(principal.role):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep
