from __future__ import annotations

import unittest

from fastapi.testclient import TestClient

from materials_ledger.db import get_db
from materials_ledger.main import app
from materials_ledger.models import PrincipalRole
from tests.support import LedgerTestCase


class ApiTestCase(LedgerTestCase):
    """Drives the HTTP surface against the shared in-memory schema."""

    def setUp(self) -> None:
        super().setUp()
        self.admin = self.add_principal('admin', PrincipalRole.ADMIN)
        self.warehouse = self.add_principal('warehouse1', PrincipalRole.WAREHOUSE)
        self.onsite = self.add_principal('onsite1', PrincipalRole.ONSITE)
        self.purchaser = self.add_principal('purchaser1', PrincipalRole.PURCHASER)
        self.retired = self.add_principal('retired', PrincipalRole.WAREHOUSE, active=False)
        self.project = self.add_project()
        self.item = self.add_item('PNL-400', in_stock=10, unit_cost='5.00')
        self.material = self.add_material(self.project, self.item, required=20)
        self.vendor = self.add_vendor()
        self.db.commit()

        def _get_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = _get_db
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        super().tearDown()

    @staticmethod
    def as_actor(principal) -> dict:
        return {'X-Actor-Id': str(principal.id)}

    def submit_claim(self, quantity: int = 3):
        return self.client.post(
            '/claims',
            headers=self.as_actor(self.onsite),
            json={
                'project_id': self.project.id,
                'items': [{'product_id': self.item.id, 'quantity': quantity}],
                'photo_ref': 'photos/claim.jpg',
            },
        )


class AccessTests(ApiTestCase):
    def test_health_needs_no_actor(self) -> None:
        self.assertEqual(self.client.get('/healthz').text, 'ok')

    def test_missing_or_unknown_actor_is_unauthorized(self) -> None:
        self.assertEqual(self.client.get('/claims').status_code, 401)
        self.assertEqual(self.client.get('/claims', headers={'X-Actor-Id': 'abc'}).status_code, 401)
        self.assertEqual(self.client.get('/claims', headers={'X-Actor-Id': '999'}).status_code, 401)

    def test_inactive_principal_is_forbidden(self) -> None:
        self.assertEqual(self.client.get('/claims', headers=self.as_actor(self.retired)).status_code, 403)

    def test_roles_gate_operations(self) -> None:
        claim_id = self.submit_claim().json()['claim']['id']
        denied = self.client.post(f'/claims/{claim_id}/approve', headers=self.as_actor(self.onsite))
        self.assertEqual(denied.status_code, 403)
        self.assertEqual(
            self.client.get('/reports/financials', headers=self.as_actor(self.warehouse)).status_code,
            403,
        )
        self.assertEqual(self.client.get('/reports/summary', headers=self.as_actor(self.admin)).status_code, 200)

    def test_admin_passes_every_gate(self) -> None:
        claim_id = self.submit_claim().json()['claim']['id']
        response = self.client.post(f'/claims/{claim_id}/approve', headers=self.as_actor(self.admin))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['claim']['processed_by_name'], 'Admin')


class ClaimApiTests(ApiTestCase):
    def test_submit_validation_error_is_400(self) -> None:
        response = self.client.post(
            '/claims',
            headers=self.as_actor(self.onsite),
            json={'project_id': self.project.id, 'items': [{'product_id': self.item.id, 'quantity': 1}]},
        )
        self.assertEqual(response.status_code, 400)

    def test_second_approval_is_a_conflict(self) -> None:
        created = self.submit_claim(quantity=3)
        self.assertEqual(created.status_code, 201)
        claim_id = created.json()['claim']['id']

        first = self.client.post(f'/claims/{claim_id}/approve', headers=self.as_actor(self.warehouse))
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()['claim']['status'], 'approved')
        self.assertEqual(first.json()['warnings'], [])

        second = self.client.post(f'/claims/{claim_id}/approve', headers=self.as_actor(self.warehouse))
        self.assertEqual(second.status_code, 409)
        detail = second.json()['detail']
        self.assertEqual((detail['current'], detail['target'], detail['retryable']), ('approved', 'approved', False))
        self.assertEqual(self.stock(self.item.id), 7)

    def test_unknown_claim_is_404(self) -> None:
        response = self.client.get('/claims/404', headers=self.as_actor(self.warehouse))
        self.assertEqual(response.status_code, 404)


class PurchaseOrderApiTests(ApiTestCase):
    def test_over_delivery_is_reported_as_warning(self) -> None:
        created = self.client.post(
            '/purchase-orders',
            headers=self.as_actor(self.purchaser),
            json={
                'vendor_id': self.vendor.id,
                'lines': [{'product_id': self.item.id, 'quantity_ordered': 10, 'unit_cost': '4.50'}],
            },
        )
        self.assertEqual(created.status_code, 201)
        po = created.json()['purchase_order']
        self.client.post(f"/purchase-orders/{po['id']}/send", headers=self.as_actor(self.purchaser))

        received = self.client.post(
            f"/purchase-orders/{po['id']}/receive",
            headers=self.as_actor(self.warehouse),
            json={'lines': [{'item_id': po['items'][0]['id'], 'quantity': 12}]},
        )
        self.assertEqual(received.status_code, 200)
        body = received.json()
        self.assertEqual(body['status'], 'received')
        self.assertEqual([w['code'] for w in body['warnings']], ['over_delivery'])
        self.assertEqual(self.stock(self.item.id), 22)

        detail = self.client.get(f"/purchase-orders/{po['id']}", headers=self.as_actor(self.onsite)).json()
        self.assertEqual(detail['total_received'], 12)

        again = self.client.post(
            f"/purchase-orders/{po['id']}/receive",
            headers=self.as_actor(self.warehouse),
            json={'lines': [{'item_id': po['items'][0]['id'], 'quantity': 1}]},
        )
        self.assertEqual(again.status_code, 409)


class AdjustmentAndNotificationApiTests(ApiTestCase):
    def test_adjustment_below_zero_is_rejected(self) -> None:
        response = self.client.post(
            '/stock-adjustments',
            headers=self.as_actor(self.admin),
            json={'product_id': self.item.id, 'delta': -11, 'reason': 'damage'},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.stock(self.item.id), 10)

        forbidden = self.client.post(
            '/stock-adjustments',
            headers=self.as_actor(self.warehouse),
            json={'product_id': self.item.id, 'delta': -1, 'reason': 'damage'},
        )
        self.assertEqual(forbidden.status_code, 403)

    def test_bad_date_filter_is_400(self) -> None:
        response = self.client.get('/stock-adjustments?from_date=yesterday', headers=self.as_actor(self.admin))
        self.assertEqual(response.status_code, 400)

    def test_read_all_clears_unread_count(self) -> None:
        self.submit_claim()
        listing = self.client.get('/notifications', headers=self.as_actor(self.warehouse)).json()
        self.assertEqual(listing['unread_count'], 1)
        self.assertEqual(listing['notifications'][0]['notification_type'], 'claim_pending')

        updated = self.client.post('/notifications/read-all', headers=self.as_actor(self.warehouse)).json()
        self.assertEqual(updated, {'updated': 1})
        listing = self.client.get('/notifications', headers=self.as_actor(self.warehouse)).json()
        self.assertEqual(listing['unread_count'], 0)


if __name__ == '__main__':
    unittest.main()
