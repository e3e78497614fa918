import argparse
from decimal import Decimal

from sqlalchemy import select

from materials_ledger.config import settings
from materials_ledger.db import get_engine, unit_of_work
from materials_ledger.logging_config import configure_logging
from materials_ledger.models import (
    Base,
    InventoryItem,
    Principal,
    PrincipalRole,
    Project,
    ProjectMaterial,
    Vendor,
)

DEMO_PRINCIPALS = [
    ('admin', 'Site Admin', PrincipalRole.ADMIN),
    ('warehouse1', 'Warehouse Lead', PrincipalRole.WAREHOUSE),
    ('onsite1', 'Onsite Crew', PrincipalRole.ONSITE),
    ('purchaser1', 'Purchasing', PrincipalRole.PURCHASER),
    ('inspector1', 'QA Inspector', PrincipalRole.INSPECTOR),
]

DEMO_ITEMS = [
    ('PNL-400', 'Solar Panel 400W', 120, Decimal('210.00'), 90),
    ('INV-7K', 'String Inverter 7kW', 14, Decimal('1350.00'), 8),
    ('RAIL-14', 'Mounting Rail 14ft', 300, Decimal('38.50'), 240),
    ('CBL-10', '10 AWG PV Cable (100ft)', 40, Decimal('72.00'), 35),
]


def seed(*, create_schema: bool = False) -> None:
    if create_schema:
        Base.metadata.create_all(get_engine())

    with unit_of_work() as db:
        for username, display_name, role in DEMO_PRINCIPALS:
            existing = db.execute(select(Principal).where(Principal.username == username)).scalar_one_or_none()
            if not existing:
                db.add(Principal(username=username, display_name=display_name, role=role, active=True))

        items_by_sku: dict[str, InventoryItem] = {}
        for sku, name, in_stock, unit_cost, consumed in DEMO_ITEMS:
            item = db.execute(select(InventoryItem).where(InventoryItem.sku == sku)).scalar_one_or_none()
            if not item:
                item = InventoryItem(
                    sku=sku,
                    product_name=name,
                    in_stock=in_stock,
                    unit_cost=unit_cost,
                    consumed_30d=consumed,
                    projected_stock=in_stock,
                )
                db.add(item)
            items_by_sku[sku] = item

        vendor = db.execute(select(Vendor).where(Vendor.name == 'Sunrise Supply')).scalar_one_or_none()
        if not vendor:
            db.add(Vendor(name='Sunrise Supply', contact_email='orders@sunrise.example', active=True))

        project = db.execute(select(Project).where(Project.name == 'Maple Street Install')).scalar_one_or_none()
        if not project:
            project = Project(name='Maple Street Install', location='Maple Street', active=True)
            db.add(project)
        db.flush()

        for sku, required in (('PNL-400', 24), ('INV-7K', 1), ('RAIL-14', 16)):
            product_id = items_by_sku[sku].id
            material = db.execute(
                select(ProjectMaterial).where(
                    ProjectMaterial.project_id == project.id,
                    ProjectMaterial.product_id == product_id,
                )
            ).scalar_one_or_none()
            if not material:
                db.add(
                    ProjectMaterial(
                        project_id=project.id,
                        product_id=product_id,
                        phase='general',
                        required_quantity=required,
                        claimed_quantity=0,
                    )
                )


def main() -> None:
    parser = argparse.ArgumentParser(description='Insert demo principals, products, a vendor and a project.')
    parser.add_argument(
        '--create-schema',
        action='store_true',
        help='Create missing tables before seeding (for local development databases).',
    )
    args = parser.parse_args()
    configure_logging(settings)
    seed(create_schema=args.create_schema)
    print('Seed data inserted/verified.')


if __name__ == '__main__':
    main()
