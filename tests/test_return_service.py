from __future__ import annotations

import unittest

from sqlalchemy import select

from materials_ledger.models import AuditLog, PrincipalRole, ReturnStatus
from materials_ledger.services.claim_service import approve_claim, submit_claim
from materials_ledger.services.errors import BOM_DRIFT, CLAIMED_CLAMPED, InvalidTransition, NotFound, ValidationError
from materials_ledger.services.project_materials import MaterialLineInput
from materials_ledger.services.return_service import approve_return, list_returns, reject_return, submit_return
from tests.support import LedgerTestCase


class ReturnWorkflowTests(LedgerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.warehouse = self.add_principal('warehouse1', PrincipalRole.WAREHOUSE)
        self.onsite = self.add_principal('onsite1', PrincipalRole.ONSITE)
        self.project = self.add_project()
        self.item = self.add_item('PNL-400', in_stock=10)
        self.material = self.add_material(self.project, self.item, claimed=6)

    def _submit(self, quantity: int = 2, **kwargs):
        return submit_return(
            self.db,
            actor=self.onsite,
            project_id=kwargs.pop('project_id', self.project.id),
            items=kwargs.pop('items', [MaterialLineInput(product_id=self.item.id, quantity=quantity)]),
            reason=kwargs.pop('reason', 'Unused after install'),
            photo_ref=kwargs.pop('photo_ref', 'photos/return.jpg'),
            **kwargs,
        )

    def test_submit_requires_photo_and_reason(self) -> None:
        with self.assertRaises(ValidationError):
            self._submit(photo_ref=None)
        with self.assertRaises(ValidationError):
            self._submit(reason='  ')
        record = self._submit()
        self.assertEqual(record.status, ReturnStatus.PENDING)
        self.assertEqual(record.return_number, 'RET-000001')

    def test_originating_claim_must_share_project(self) -> None:
        other_project = self.add_project('Oak Avenue')
        claim = submit_claim(
            self.db,
            actor=self.onsite,
            project_id=other_project.id,
            items=[MaterialLineInput(product_id=self.item.id, quantity=1)],
            photo_ref='p.jpg',
        )
        with self.assertRaises(ValidationError):
            self._submit(claim_id=claim.id)
        with self.assertRaises(NotFound):
            self._submit(claim_id=404)
        record = self._submit(project_id=other_project.id, claim_id=claim.id)
        self.assertEqual(record.claim_id, claim.id)

    def test_approve_restocks_and_releases_claimed(self) -> None:
        record = self._submit(quantity=2)
        result = approve_return(self.db, return_id=record.id, actor=self.warehouse)

        self.assertEqual(result.return_record.status, ReturnStatus.APPROVED)
        self.assertEqual(result.warnings, [])
        self.assertEqual(self.stock(self.item.id), 12)
        self.assertEqual(self.claimed(self.material.id), 4)
        actions = self.db.execute(select(AuditLog.action).order_by(AuditLog.id)).scalars().all()
        self.assertEqual(actions, ['return_initiated', 'return_approved'])

    def test_over_return_clamps_claimed_at_zero(self) -> None:
        record = self._submit(quantity=9)
        with self.assertLogs('materials_ledger.services.return_service', level='WARNING') as logs:
            result = approve_return(self.db, return_id=record.id, actor=self.warehouse)

        self.assertEqual(self.claimed(self.material.id), 0)
        self.assertEqual(self.stock(self.item.id), 19)
        self.assertEqual([w.code for w in result.warnings], [CLAIMED_CLAMPED])
        self.assertIn('claimed_clamped', logs.output[0])

    def test_return_of_unlisted_product_warns(self) -> None:
        stray = self.add_item('CBL-10', in_stock=0)
        record = self._submit(items=[MaterialLineInput(product_id=stray.id, quantity=3)])
        result = approve_return(self.db, return_id=record.id, actor=self.warehouse)
        self.assertEqual([w.code for w in result.warnings], [BOM_DRIFT])
        self.assertEqual(self.stock(stray.id), 3)

    def test_processed_returns_are_terminal(self) -> None:
        record = self._submit()
        approve_return(self.db, return_id=record.id, actor=self.warehouse)
        with self.assertRaises(InvalidTransition):
            approve_return(self.db, return_id=record.id, actor=self.warehouse)
        with self.assertRaises(InvalidTransition):
            reject_return(self.db, return_id=record.id, actor=self.warehouse)
        self.assertEqual(self.stock(self.item.id), 12)

    def test_reject_has_no_ledger_effect(self) -> None:
        record = self._submit(notes='Boxed')
        result = reject_return(self.db, return_id=record.id, actor=self.warehouse, reason='Damaged on return')
        self.assertEqual(result.return_record.status, ReturnStatus.REJECTED)
        self.assertEqual(result.return_record.notes, 'Boxed\nRejected: Damaged on return')
        self.assertEqual(self.stock(self.item.id), 10)
        self.assertEqual(self.claimed(self.material.id), 6)

    def test_claim_then_return_round_trip(self) -> None:
        claim = submit_claim(
            self.db,
            actor=self.onsite,
            project_id=self.project.id,
            items=[MaterialLineInput(product_id=self.item.id, quantity=4)],
            photo_ref='p.jpg',
        )
        approve_claim(self.db, claim_id=claim.id, actor=self.warehouse)
        record = self._submit(quantity=4, claim_id=claim.id)
        approve_return(self.db, return_id=record.id, actor=self.warehouse)

        self.assertEqual(self.stock(self.item.id), 10)
        self.assertEqual(self.claimed(self.material.id), 6)
        self.assertEqual([r.id for r in list_returns(self.db, status=ReturnStatus.APPROVED)], [record.id])


if __name__ == '__main__':
    unittest.main()
