from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from materials_ledger.models import Project, ProjectMaterial
from materials_ledger.services.errors import NotFound, ValidationError
from materials_ledger.services.inventory_ledger import ensure_products_exist

DEFAULT_PHASE = 'general'


@dataclass(frozen=True)
class MaterialLineInput:
    product_id: int
    quantity: int
    phase: str | None = None


def get_project(db: Session, project_id: int) -> Project:
    project = db.execute(select(Project).where(Project.id == project_id)).scalar_one_or_none()
    if project is None:
        raise NotFound('Project', project_id)
    return project


def validate_material_lines(db: Session, lines: list[MaterialLineInput]) -> list[MaterialLineInput]:
    if not lines:
        raise ValidationError('At least one item is required')
    cleaned: list[MaterialLineInput] = []
    for line in lines:
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int):
            raise ValidationError(f'Quantity for product {line.product_id} must be a whole number')
        if line.quantity < 1:
            raise ValidationError(f'Quantity for product {line.product_id} must be at least 1')
        phase = (line.phase or '').strip() or None
        cleaned.append(MaterialLineInput(product_id=line.product_id, quantity=line.quantity, phase=phase))
    ensure_products_exist(db, [line.product_id for line in cleaned])
    return cleaned


def match_material(db: Session, *, project_id: int, product_id: int, phase: str | None) -> ProjectMaterial | None:
    query = select(ProjectMaterial).where(
        ProjectMaterial.project_id == project_id,
        ProjectMaterial.product_id == product_id,
    )
    if phase:
        query = query.where(ProjectMaterial.phase == phase)
    return db.execute(query.order_by(ProjectMaterial.id.asc()).limit(1)).scalar_one_or_none()


def add_claimed(db: Session, *, material_id: int, quantity: int) -> None:
    db.execute(
        update(ProjectMaterial)
        .where(ProjectMaterial.id == material_id)
        .values(claimed_quantity=ProjectMaterial.claimed_quantity + quantity, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )


def release_claimed(db: Session, *, material_id: int, quantity: int) -> tuple[int, int]:
    """Subtract ``quantity`` from the claimed counter, never going below zero.

    Returns ``(previous, new)`` so callers can tell when the value was clamped.
    """
    previous = db.execute(
        select(ProjectMaterial.claimed_quantity).where(ProjectMaterial.id == material_id)
    ).scalar_one()
    db.execute(
        update(ProjectMaterial)
        .where(ProjectMaterial.id == material_id)
        .values(
            claimed_quantity=case(
                (ProjectMaterial.claimed_quantity >= quantity, ProjectMaterial.claimed_quantity - quantity),
                else_=0,
            ),
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    new = db.execute(select(ProjectMaterial.claimed_quantity).where(ProjectMaterial.id == material_id)).scalar_one()
    return previous, new


def list_project_materials(db: Session, *, project_id: int) -> list[ProjectMaterial]:
    return db.execute(
        select(ProjectMaterial)
        .where(ProjectMaterial.project_id == project_id)
        .order_by(ProjectMaterial.phase.asc(), ProjectMaterial.id.asc())
    ).scalars().all()
