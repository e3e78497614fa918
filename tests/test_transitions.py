from __future__ import annotations

import unittest

from materials_ledger.models import ClaimStatus, PurchaseOrderStatus, ReturnStatus
from materials_ledger.services.errors import InvalidTransition
from materials_ledger.services.transitions import (
    can_transition,
    derive_receiving_status,
    ensure_transition,
    is_terminal,
    sources_for,
)


class TransitionTableTests(unittest.TestCase):
    def test_claims_leave_pending_once(self) -> None:
        self.assertTrue(can_transition(ClaimStatus.PENDING, ClaimStatus.APPROVED))
        self.assertTrue(can_transition(ClaimStatus.PENDING, ClaimStatus.DENIED))
        self.assertFalse(can_transition(ClaimStatus.APPROVED, ClaimStatus.DENIED))
        self.assertTrue(is_terminal(ClaimStatus.DENIED))
        self.assertEqual(sources_for(ClaimStatus.APPROVED), frozenset({ClaimStatus.PENDING}))

    def test_purchase_order_lifecycle(self) -> None:
        self.assertTrue(can_transition(PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.SENT))
        self.assertFalse(can_transition(PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.RECEIVED))
        self.assertTrue(can_transition(PurchaseOrderStatus.PARTIAL, PurchaseOrderStatus.IN_TRANSIT))
        self.assertFalse(can_transition(PurchaseOrderStatus.RECEIVED, PurchaseOrderStatus.CANCELLED))
        self.assertEqual(
            sources_for(PurchaseOrderStatus.CANCELLED),
            frozenset(
                {
                    PurchaseOrderStatus.DRAFT,
                    PurchaseOrderStatus.SENT,
                    PurchaseOrderStatus.IN_TRANSIT,
                    PurchaseOrderStatus.PARTIAL,
                }
            ),
        )

    def test_returns_mirror_claims(self) -> None:
        self.assertTrue(can_transition(ReturnStatus.PENDING, ReturnStatus.REJECTED))
        self.assertTrue(is_terminal(ReturnStatus.APPROVED))

    def test_ensure_transition(self) -> None:
        ensure_transition('claim', 1, ClaimStatus.PENDING, ClaimStatus.APPROVED)
        # Re-entering a non-terminal state is a no-op, e.g. partial -> partial.
        ensure_transition('purchase_order', 1, PurchaseOrderStatus.PARTIAL, PurchaseOrderStatus.PARTIAL)
        with self.assertRaises(InvalidTransition) as ctx:
            ensure_transition('claim', 7, ClaimStatus.APPROVED, ClaimStatus.APPROVED)
        self.assertEqual((ctx.exception.current, ctx.exception.target), ('approved', 'approved'))
        with self.assertRaises(InvalidTransition):
            ensure_transition('purchase_order', 7, PurchaseOrderStatus.CANCELLED, PurchaseOrderStatus.SENT)


class ReceivingStatusTests(unittest.TestCase):
    def test_nothing_received_keeps_status(self) -> None:
        self.assertEqual(derive_receiving_status(10, 0, PurchaseOrderStatus.SENT), PurchaseOrderStatus.SENT)

    def test_partial_and_full(self) -> None:
        self.assertEqual(derive_receiving_status(10, 4, PurchaseOrderStatus.SENT), PurchaseOrderStatus.PARTIAL)
        self.assertEqual(derive_receiving_status(10, 10, PurchaseOrderStatus.PARTIAL), PurchaseOrderStatus.RECEIVED)
        self.assertEqual(derive_receiving_status(10, 12, PurchaseOrderStatus.IN_TRANSIT), PurchaseOrderStatus.RECEIVED)


if __name__ == '__main__':
    unittest.main()
