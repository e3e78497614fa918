from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from materials_ledger.auth import Principal, principal_from_model
from materials_ledger.models import (
    Base,
    InventoryItem,
    InventoryMovement,
    Principal as PrincipalModel,
    PrincipalRole,
    Project,
    ProjectMaterial,
    Vendor,
)


def make_engine(url: str = 'sqlite://'):
    if url == 'sqlite://':
        engine = create_engine(url, poolclass=StaticPool, connect_args={'check_same_thread': False})
    else:
        engine = create_engine(url)
    Base.metadata.create_all(engine)
    return engine


class LedgerTestCase(unittest.TestCase):
    """Fresh in-memory schema per test plus small builders for fixture rows."""

    def setUp(self) -> None:
        self.engine = make_engine()
        self.Session = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        self.db = self.Session()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def add_principal(self, username: str, role: PrincipalRole, *, active: bool = True) -> Principal:
        row = PrincipalModel(username=username, display_name=username.title(), role=role, active=active)
        self.db.add(row)
        self.db.flush()
        return principal_from_model(row)

    def add_item(
        self,
        sku: str = 'SKU-1',
        *,
        in_stock: int = 10,
        unit_cost: str = '2.50',
        **fields,
    ) -> InventoryItem:
        item = InventoryItem(
            sku=sku,
            product_name=fields.pop('product_name', f'Product {sku}'),
            in_stock=in_stock,
            unit_cost=Decimal(unit_cost),
            **fields,
        )
        self.db.add(item)
        self.db.flush()
        return item

    def add_project(self, name: str = 'Maple Street') -> Project:
        project = Project(name=name, active=True)
        self.db.add(project)
        self.db.flush()
        return project

    def add_material(
        self,
        project: Project,
        item: InventoryItem,
        *,
        required: int = 10,
        claimed: int = 0,
        phase: str = 'general',
    ) -> ProjectMaterial:
        material = ProjectMaterial(
            project_id=project.id,
            product_id=item.id,
            phase=phase,
            required_quantity=required,
            claimed_quantity=claimed,
        )
        self.db.add(material)
        self.db.flush()
        return material

    def add_vendor(self, name: str = 'Sunrise Supply', *, active: bool = True) -> Vendor:
        vendor = Vendor(name=name, active=active)
        self.db.add(vendor)
        self.db.flush()
        return vendor

    def stock(self, product_id: int) -> int:
        return self.db.execute(select(InventoryItem.in_stock).where(InventoryItem.id == product_id)).scalar_one()

    def claimed(self, material_id: int) -> int:
        return self.db.execute(
            select(ProjectMaterial.claimed_quantity).where(ProjectMaterial.id == material_id)
        ).scalar_one()

    def movements(self, product_id: int) -> list[InventoryMovement]:
        return self.db.execute(
            select(InventoryMovement).where(InventoryMovement.product_id == product_id).order_by(InventoryMovement.id)
        ).scalars().all()
