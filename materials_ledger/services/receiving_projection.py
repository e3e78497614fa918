"""Client-side view of purchase orders with optimistic receiving.

A caller that wants the receiving screen to update immediately uses
``ReceivingProjection.receive``. The local view is snapshotted, the expected
result is applied straight away, and then the server call runs. If the call
fails the snapshot is put back and the error re-raised; if it succeeds the
server's answer replaces the projection. Either way the order is re-read from
the authoritative source afterwards. The projected view is never reported as
confirmed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from materials_ledger.config import settings
from materials_ledger.models import PurchaseOrderStatus
from materials_ledger.services.errors import Conflict, InvalidTransition, LedgerError, NotFound, ValidationError
from materials_ledger.services.transitions import RECEIVABLE_STATUSES, derive_receiving_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemView:
    id: int
    product_id: int
    quantity_ordered: int
    quantity_received: int


@dataclass(frozen=True)
class PurchaseOrderView:
    id: int
    po_number: str
    status: PurchaseOrderStatus
    items: tuple[ItemView, ...]
    confirmed: bool = True

    @property
    def total_ordered(self) -> int:
        return sum(item.quantity_ordered for item in self.items)

    @property
    def total_received(self) -> int:
        return sum(item.quantity_received for item in self.items)


def view_from_payload(payload: dict) -> PurchaseOrderView:
    return PurchaseOrderView(
        id=payload['id'],
        po_number=payload['po_number'],
        status=PurchaseOrderStatus(payload['status']),
        items=tuple(
            ItemView(
                id=item['id'],
                product_id=item['product_id'],
                quantity_ordered=item['quantity_ordered'],
                quantity_received=item['quantity_received'],
            )
            for item in payload['items']
        ),
    )


def project_receipt(view: PurchaseOrderView, lines: list[tuple[int, int]]) -> PurchaseOrderView:
    """Apply ``(item_id, quantity)`` lines locally, using the server's status rule."""
    added: dict[int, int] = {}
    for item_id, quantity in lines:
        added[item_id] = added.get(item_id, 0) + quantity
    items = tuple(
        replace(item, quantity_received=item.quantity_received + added.get(item.id, 0)) for item in view.items
    )
    total_ordered = sum(item.quantity_ordered for item in items)
    total_received = sum(item.quantity_received for item in items)
    return replace(
        view,
        items=items,
        status=derive_receiving_status(total_ordered, total_received, view.status),
        confirmed=False,
    )


class ReceivingTransport(Protocol):
    def fetch(self, po_id: int) -> PurchaseOrderView: ...

    def receive(self, po_id: int, lines: list[tuple[int, int]]) -> PurchaseOrderView: ...


class ReceivingProjection:
    def __init__(self, transport: ReceivingTransport) -> None:
        self.transport = transport
        self.views: dict[int, PurchaseOrderView] = {}

    def load(self, po_id: int) -> PurchaseOrderView:
        view = self.transport.fetch(po_id)
        self.views[po_id] = view
        return view

    def get(self, po_id: int) -> PurchaseOrderView | None:
        return self.views.get(po_id)

    def receive(self, po_id: int, lines: list[tuple[int, int]]) -> PurchaseOrderView:
        snapshot = self.views.get(po_id) or self.load(po_id)
        if snapshot.status not in RECEIVABLE_STATUSES:
            raise InvalidTransition(
                'Purchase order', snapshot.po_number, snapshot.status.value, PurchaseOrderStatus.RECEIVED.value
            )

        self.views[po_id] = project_receipt(snapshot, lines)
        try:
            confirmed = self.transport.receive(po_id, lines)
        except Exception:
            self.views[po_id] = snapshot
            self._resync(po_id, after='a rejected receive')
            raise

        # The delivery is committed; a failed refresh keeps the confirmed view.
        self.views[po_id] = confirmed
        return self._resync(po_id, after='a confirmed receive')

    def _resync(self, po_id: int, *, after: str) -> PurchaseOrderView:
        try:
            return self.load(po_id)
        except (LedgerError, ValueError, OSError) as exc:
            logger.warning('Resync of purchase order %s failed after %s: %s', po_id, after, exc)
            return self.views[po_id]


def _error_from_response(code: int, body: str, *, path: str, po_id: int) -> Exception:
    """Rebuild the server-side error from the JSON `detail` the routers send."""
    try:
        detail = json.loads(body).get('detail') if body else None
    except (ValueError, AttributeError):
        detail = None

    if code == 409:
        if isinstance(detail, dict) and detail.get('retryable') is False:
            return InvalidTransition('Purchase order', po_id, detail.get('current'), detail.get('target'))
        return Conflict(f'Ledger API conflict on {path}: {body}')
    if code == 404:
        return NotFound('Purchase order', po_id)
    if code == 400:
        return ValidationError(detail if isinstance(detail, str) else f'Ledger API rejected {path}: {body}')
    return ValueError(f'Ledger API error {code} on {path}: {body}')


class HttpReceivingTransport:
    """Talks to the purchase-order endpoints of a running ledger API."""

    def __init__(self, *, actor_id: int, base_url: str | None = None, timeout: int | None = None) -> None:
        self.base_url = (base_url or settings.ledger_api_base_url).rstrip('/')
        self.timeout = timeout or settings.ledger_api_timeout_seconds
        self.headers = {
            'X-Actor-Id': str(actor_id),
            'Content-Type': 'application/json',
        }

    def _call(self, method: str, path: str, *, po_id: int, payload: dict | None = None) -> dict:
        data = json.dumps(payload).encode('utf-8') if payload is not None else None
        req = Request(url=f'{self.base_url}{path}', data=data, headers=self.headers, method=method)
        try:
            with urlopen(req, timeout=self.timeout) as response:
                return json.loads(response.read().decode('utf-8'))
        except HTTPError as exc:
            body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
            raise _error_from_response(exc.code, body, path=path, po_id=po_id) from exc
        except URLError as exc:
            raise ValueError(f'Ledger API network error on {path}: {exc.reason}') from exc

    def fetch(self, po_id: int) -> PurchaseOrderView:
        return view_from_payload(self._call('GET', f'/purchase-orders/{po_id}', po_id=po_id))

    def receive(self, po_id: int, lines: list[tuple[int, int]]) -> PurchaseOrderView:
        payload = {'lines': [{'item_id': item_id, 'quantity': quantity} for item_id, quantity in lines]}
        body = self._call('POST', f'/purchase-orders/{po_id}/receive', po_id=po_id, payload=payload)
        return view_from_payload(body['purchase_order'])
