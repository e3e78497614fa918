from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from materials_ledger.models import PrincipalRole
from materials_ledger.services import audit_service
from materials_ledger.services.errors import NotFound
from materials_ledger.services.notification_service import (
    list_notifications,
    mark_all_read,
    mark_read,
    notify,
    notify_role,
    unread_count,
)
from tests.support import LedgerTestCase


class NotificationOutboxTests(LedgerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.alice = self.add_principal('alice', PrincipalRole.ADMIN)
        self.bob = self.add_principal('bob', PrincipalRole.ADMIN)
        self.retired = self.add_principal('retired', PrincipalRole.ADMIN, active=False)
        self.crew = self.add_principal('crew', PrincipalRole.ONSITE)

    def test_notify_role_targets_active_principals_once(self) -> None:
        rows = notify_role(self.db, role=PrincipalRole.ADMIN, message='Claim approved', notification_type='claim_approved')
        self.assertEqual(sorted(row.recipient_principal_id for row in rows), sorted([self.alice.id, self.bob.id]))

        rows = notify(self.db, recipient_ids=[self.crew.id, self.crew.id], message='Hi', notification_type='note')
        self.assertEqual(len(rows), 1)

    def test_unread_count_and_mark_read(self) -> None:
        notify(self.db, recipient_ids=[self.alice.id], message='one', notification_type='note')
        notify(self.db, recipient_ids=[self.alice.id], message='two', notification_type='note')
        notify(self.db, recipient_ids=[self.bob.id], message='other', notification_type='note')
        self.db.flush()
        self.assertEqual(unread_count(self.db, recipient_id=self.alice.id), 2)

        newest = list_notifications(self.db, recipient_id=self.alice.id)[0]
        self.assertEqual(newest.message, 'two')
        mark_read(self.db, notification_id=newest.id, recipient_id=self.alice.id)
        self.assertEqual(unread_count(self.db, recipient_id=self.alice.id), 1)
        self.assertEqual([n.message for n in list_notifications(self.db, recipient_id=self.alice.id, unread_only=True)], ['one'])

    def test_mark_read_is_scoped_to_recipient(self) -> None:
        (row,) = notify(self.db, recipient_ids=[self.bob.id], message='private', notification_type='note')
        self.db.flush()
        with self.assertRaises(NotFound):
            mark_read(self.db, notification_id=row.id, recipient_id=self.alice.id)
        with self.assertRaises(NotFound):
            mark_read(self.db, notification_id=9999, recipient_id=self.alice.id)

    def test_mark_all_read(self) -> None:
        notify(self.db, recipient_ids=[self.alice.id], message='one', notification_type='note')
        notify(self.db, recipient_ids=[self.alice.id], message='two', notification_type='note')
        notify(self.db, recipient_ids=[self.bob.id], message='other', notification_type='note')
        self.db.flush()
        self.assertEqual(mark_all_read(self.db, recipient_id=self.alice.id), 2)
        self.assertEqual(unread_count(self.db, recipient_id=self.alice.id), 0)
        self.assertEqual(unread_count(self.db, recipient_id=self.bob.id), 1)

    def test_listing_respects_page_size(self) -> None:
        for index in range(5):
            notify(self.db, recipient_ids=[self.alice.id], message=f'n{index}', notification_type='note')
        self.db.flush()
        self.assertEqual(len(list_notifications(self.db, recipient_id=self.alice.id, limit=3)), 3)


class AuditTrailTests(LedgerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.admin = self.add_principal('admin', PrincipalRole.ADMIN)
        self.crew = self.add_principal('crew', PrincipalRole.ONSITE)

    def test_log_audit_records_actor_snapshot(self) -> None:
        entry = audit_service.log_audit(
            self.db,
            actor=self.crew,
            action=audit_service.CLAIM_INITIATED,
            description='Crew submitted claim CLM-000001',
            entity_type='claim',
            entity_id=1,
            photo_ref='p.jpg',
            metadata={'claim_number': 'CLM-000001'},
        )
        self.db.flush()
        self.assertEqual((entry.actor_principal_id, entry.actor_name, entry.actor_role), (self.crew.id, 'Crew', 'onsite'))
        self.assertEqual(audit_service.audit_to_dict(entry)['metadata'], {'claim_number': 'CLM-000001'})

    def test_filters(self) -> None:
        audit_service.log_audit(self.db, actor=self.crew, action='claim_initiated', description='a')
        audit_service.log_audit(self.db, actor=self.admin, action='stock_adjustment_created', description='b')
        audit_service.log_audit(self.db, actor=None, action='claim_initiated', description='system')
        self.db.flush()

        self.assertEqual(len(audit_service.list_audit_logs(self.db)), 3)
        self.assertEqual(len(audit_service.list_audit_logs(self.db, action='all')), 3)
        self.assertEqual(
            [e.description for e in audit_service.list_audit_logs(self.db, action='claim_initiated')],
            ['system', 'a'],
        )
        self.assertEqual([e.description for e in audit_service.list_audit_logs(self.db, actor_name='adm')], ['b'])
        self.assertEqual(len(audit_service.list_audit_logs(self.db, limit=1)), 1)

        tomorrow = datetime.now(tz=timezone.utc) + timedelta(days=1)
        self.assertEqual(audit_service.list_audit_logs(self.db, start=tomorrow), [])


if __name__ == '__main__':
    unittest.main()
