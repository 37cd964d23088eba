import dataclasses

import pytest

from shipment_sync.connectivity import StaticConnectivityOracle
from shipment_sync.local_store import LocalStore
from shipment_sync.model import MASTER_COLLECTIONS, Box, Lookup, Product, Shipment


class FakeRemoteStore:
    """In-memory stand-in for the Firestore mirror that records every call."""

    def __init__(self, user_id="user-1", log=None):
        self.user_id = user_id
        self.shipments = {}
        self.boxes = {}  # (shipment_id, box_id) -> Box
        self.products = {}  # (shipment_id, box_id, product_id) -> Product
        self.masters = {name: {} for name in MASTER_COLLECTIONS}
        self.calls = []
        self.log = log if log is not None else []
        self.failures = {}  # method name -> exception raised on every call

    @property
    def is_authenticated(self):
        return bool(self.user_id)

    def requires_authenticated_user(self):
        return True

    def _record(self, name, *key):
        self.calls.append((name, *key))
        self.log.append(("remote", name, *key))
        exc = self.failures.get(name)
        if exc is not None:
            raise exc

    def get_shipment(self, invoice_number):
        self._record("get_shipment", invoice_number)
        shipment = self.shipments.get(invoice_number)
        return Lookup.hit(dataclasses.replace(shipment)) if shipment else Lookup.miss()

    def list_shipments(self, status=None):
        self._record("list_shipments")
        return [
            dataclasses.replace(s)
            for s in self.shipments.values()
            if status is None or s.status == status
        ]

    def upsert_shipment(self, shipment):
        self._record("upsert_shipment", shipment.invoice_number)
        self.shipments[shipment.invoice_number] = dataclasses.replace(shipment)

    def update_shipment_status(self, invoice_number, status):
        self._record("update_shipment_status", invoice_number, status)
        self.shipments[invoice_number].status = status

    def delete_shipment(self, invoice_number):
        self._record("delete_shipment", invoice_number)
        self.shipments.pop(invoice_number, None)
        for key in [k for k in self.products if k[0] == invoice_number]:
            del self.products[key]
        for key in [k for k in self.boxes if k[0] == invoice_number]:
            del self.boxes[key]

    def get_boxes(self, shipment_id):
        self._record("get_boxes", shipment_id)
        return [dataclasses.replace(b) for (sid, _), b in self.boxes.items() if sid == shipment_id]

    def upsert_box(self, box):
        self._record("upsert_box", box.id)
        self.boxes[(box.shipment_id, box.id)] = dataclasses.replace(box)

    def delete_box(self, shipment_id, box_id):
        self._record("delete_box", box_id)
        self.boxes.pop((shipment_id, box_id), None)

    def get_products(self, shipment_id, box_id):
        self._record("get_products", box_id)
        return [
            dataclasses.replace(p)
            for (sid, bid, _), p in self.products.items()
            if sid == shipment_id and bid == box_id
        ]

    def upsert_product(self, shipment_id, product):
        self._record("upsert_product", product.id)
        self.products[(shipment_id, product.box_id, product.id)] = dataclasses.replace(product)

    def delete_product(self, shipment_id, box_id, product_id):
        self._record("delete_product", product_id)
        self.products.pop((shipment_id, box_id, product_id), None)

    def delete_orphans(self):
        self._record("delete_orphans")
        orphan_boxes = [k for k in self.boxes if k[0] not in self.shipments]
        for key in orphan_boxes:
            del self.boxes[key]
        orphan_products = [k for k in self.products if (k[0], k[1]) not in self.boxes]
        for key in orphan_products:
            del self.products[key]
        return len(orphan_boxes), len(orphan_products)

    def list_master(self, collection):
        self._record("list_master", collection)
        return list(self.masters[collection].values())

    def upsert_master(self, collection, record):
        self._record("upsert_master", collection, record.id)
        self.masters[collection][record.id] = record


class RecordingLocalStore(LocalStore):
    """LocalStore that appends its deletes to a shared call log."""

    def __init__(self, log):
        super().__init__(":memory:")
        self.log = log

    def delete_box(self, shipment_id, box_id):
        self.log.append(("local", "delete_box", box_id))
        super().delete_box(shipment_id, box_id)

    def delete_product(self, shipment_id, box_id, product_id):
        self.log.append(("local", "delete_product", product_id))
        super().delete_product(shipment_id, box_id, product_id)


class SequenceOracle:
    """Reachable for the first ``reachable_calls`` checks, unreachable after."""

    def __init__(self, reachable_calls):
        self.remaining = reachable_calls
        self.checks = 0

    def is_reachable(self):
        self.checks += 1
        if self.remaining <= 0:
            return False
        self.remaining -= 1
        return True


@pytest.fixture
def local():
    store = LocalStore(":memory:")
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def online():
    return StaticConnectivityOracle(True)


@pytest.fixture
def offline():
    return StaticConnectivityOracle(False)


def make_shipment(invoice_number="CS0001", **overrides):
    values = {"shipper": "Flora Exports", "consignee": "Blooms Ltd", "awb": "awb001"}
    values.update(overrides)
    return Shipment(invoice_number=invoice_number, **values)


def seed_tree(store, shipment_id="CS0001"):
    """Persist shipment CS0001 with box B1 holding product P1 (weight 5.0)."""
    store.upsert_shipment(make_shipment(shipment_id))
    store.upsert_box(Box(id="B1", shipment_id=shipment_id, box_number="Box 1"))
    store.upsert_product(shipment_id, Product(id="P1", box_id="B1", type="Rose", weight=5.0))
