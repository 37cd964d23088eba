import pytest
from conftest import (
    FakeRemoteStore,
    RecordingLocalStore,
    SequenceOracle,
    make_shipment,
    seed_tree,
)

from shipment_sync.connectivity import StaticConnectivityOracle
from shipment_sync.errors import (
    LocalStoreError,
    RemoteOperationTimeout,
    RemoteStoreError,
    RemoteUnreachable,
)
from shipment_sync.model import Box, BoxInput, ProductInput
from shipment_sync.reconcile import ReconciliationExecutor, RemoteLeg


def _scenario_boxes():
    return [
        BoxInput(
            "Box 1",
            id="B1",
            products=[ProductInput(type="Rose", id="P1", weight=7.5)],
        ),
        BoxInput("Box 2", products=[ProductInput(type="Lily", weight=2.0)]),
    ]


# --------------------------------------------------------------------
# RECONCILIATION PASS TESTS
# --------------------------------------------------------------------
def test_update_and_add_scenario(local, remote, online):
    seed_tree(local)
    seed_tree(remote)
    executor = ReconciliationExecutor(local, remote, online)

    result = executor.reconcile(make_shipment(), _scenario_boxes())

    assert result.local_applied and result.remote_applied
    assert result.boxes.as_dict() == {"added": 1, "updated": 1, "deleted": 0, "failed": 0}
    assert result.products.added == 1
    assert result.products.updated == 1

    boxes = local.get_boxes("CS0001")
    assert len(boxes) == 2
    products = [p for b in boxes for p in local.get_products("CS0001", b.id)]
    assert len(products) == 2
    assert next(p for p in products if p.id == "P1").weight == 7.5

    # Remote mirrors the same keys
    assert {b.id for b in remote.get_boxes("CS0001")} == {b.id for b in boxes}
    assert len(remote.products) == 2


def test_minted_ids_written_back_and_second_pass_is_noop(local, remote, online):
    executor = ReconciliationExecutor(local, remote, online)
    boxes = _scenario_boxes()
    seed_tree(local)

    executor.reconcile(make_shipment(), boxes)
    assert boxes[1].id is not None
    assert boxes[1].products[0].id is not None

    second = executor.reconcile(make_shipment(), boxes)

    assert second.boxes.total == 0
    assert second.products.total == 0
    assert len(local.get_boxes("CS0001")) == 2


def test_none_boxes_leaves_tree_untouched(local, online):
    seed_tree(local)
    executor = ReconciliationExecutor(local, None, online)

    result = executor.reconcile(make_shipment(shipper="New Shipper"), None)

    assert result.boxes.total == 0
    assert [b.id for b in local.get_boxes("CS0001")] == ["B1"]
    assert local.get_shipment("CS0001").unwrap().shipper == "New Shipper"


def test_empty_boxes_deletes_whole_tree(local, remote, online):
    seed_tree(local)
    seed_tree(remote)
    executor = ReconciliationExecutor(local, remote, online)

    result = executor.reconcile(make_shipment(), [])

    assert result.boxes.deleted == 1
    assert result.products.deleted == 1
    assert local.get_boxes("CS0001") == []
    assert remote.boxes == {} and remote.products == {}


def test_products_none_keeps_existing_products(local, online):
    seed_tree(local)
    executor = ReconciliationExecutor(local, None, online)

    executor.reconcile(make_shipment(), [BoxInput("Box 1 renamed", id="B1", products=None)])

    assert [p.id for p in local.get_products("CS0001", "B1")] == ["P1"]
    assert local.get_boxes("CS0001")[0].box_number == "Box 1 renamed"


def test_cascade_deletes_products_before_box():
    log = []
    local = RecordingLocalStore(log)
    local.initialize()
    remote = FakeRemoteStore(log=log)
    seed_tree(local)
    seed_tree(remote)
    executor = ReconciliationExecutor(local, remote, StaticConnectivityOracle(True))

    executor.reconcile(make_shipment(), [])

    deletes = [
        entry
        for entry in log
        if entry[1].startswith("delete_") and entry[1] != "delete_orphans"
    ]
    assert deletes == [
        ("local", "delete_product", "P1"),
        ("remote", "delete_product", "P1"),
        ("local", "delete_box", "B1"),
        ("remote", "delete_box", "B1"),
    ]
    local.close()


def test_product_only_change_does_not_rewrite_box(local, remote, online):
    seed_tree(local)
    seed_tree(remote)
    remote.calls.clear()
    executor = ReconciliationExecutor(local, remote, online)
    boxes = [BoxInput("Box 1", id="B1", products=[ProductInput(type="Rose", id="P1", weight=7.5)])]

    result = executor.reconcile(make_shipment(), boxes)

    assert result.boxes.updated == 1
    assert result.products.updated == 1
    assert not any(c[0] == "upsert_box" for c in remote.calls)
    assert local.get_boxes("CS0001")[0].updated_at is None
    assert local.get_products("CS0001", "B1")[0].weight == 7.5
    assert remote.products[("CS0001", "B1", "P1")].weight == 7.5


def test_same_box_id_in_two_shipments_kept_apart(local, remote, online):
    executor = ReconciliationExecutor(local, remote, online)

    for invoice, flower in (("CS0001", "Rose"), ("CS0002", "Lily")):
        executor.reconcile(
            make_shipment(invoice),
            [BoxInput("Box 1", id="B1", products=[ProductInput(type=flower, id="P1")])],
        )

    assert [b.id for b in local.get_boxes("CS0001")] == ["B1"]
    assert [b.id for b in local.get_boxes("CS0002")] == ["B1"]
    assert [p.type for p in local.get_products("CS0001", "B1")] == ["Rose"]
    assert [p.type for p in local.get_products("CS0002", "B1")] == ["Lily"]
    assert set(remote.boxes) == {("CS0001", "B1"), ("CS0002", "B1")}

    # Emptying one shipment leaves the other's tree alone
    executor.reconcile(make_shipment("CS0002"), [])

    assert local.get_boxes("CS0002") == []
    assert [p.type for p in local.get_products("CS0001", "B1")] == ["Rose"]
    assert set(remote.products) == {("CS0001", "B1", "P1")}


def test_same_product_id_in_two_boxes_kept_apart(local, remote, online):
    boxes = [
        BoxInput("Box 1", id="B1", products=[ProductInput(type="Rose", id="P1")]),
        BoxInput("Box 2", id="B2", products=[ProductInput(type="Lily", id="P1")]),
    ]

    result = ReconciliationExecutor(local, remote, online).reconcile(make_shipment(), boxes)

    assert result.products.added == 2
    assert [p.type for p in local.get_products("CS0001", "B1")] == ["Rose"]
    assert [p.type for p in local.get_products("CS0001", "B2")] == ["Lily"]
    assert remote.products[("CS0001", "B2", "P1")].type == "Lily"


def test_duplicate_ids_rejected_before_any_write(local, remote, online):
    executor = ReconciliationExecutor(local, remote, online)
    boxes = [BoxInput("A", id="B1"), BoxInput("B", id="B1")]

    with pytest.raises(ValueError):
        executor.reconcile(make_shipment(), boxes)

    assert not local.get_shipment("CS0001").found
    assert remote.calls == []


# --------------------------------------------------------------------
# DEGRADED MODE TESTS
# --------------------------------------------------------------------
def test_unreachable_remote_still_applies_locally(local, remote, offline):
    executor = ReconciliationExecutor(local, remote, offline)

    result = executor.reconcile(make_shipment(), _scenario_boxes())

    assert result.local_applied is True
    assert result.remote_applied is False
    assert result.degraded
    assert "cloud backup unavailable" in result.message
    assert len(local.get_boxes("CS0001")) == 2
    assert remote.calls == []


def test_unauthenticated_remote_is_skipped(local, online):
    remote = FakeRemoteStore(user_id=None)
    result = ReconciliationExecutor(local, remote, online).reconcile(make_shipment(), [])
    assert result.local_applied and not result.remote_applied
    assert remote.calls == []


def test_connectivity_lost_mid_pass_marks_leg_down(local, remote):
    # Pass start, shipment upsert, first box upsert; then the network drops
    oracle = SequenceOracle(reachable_calls=3)
    executor = ReconciliationExecutor(local, remote, oracle)

    result = executor.reconcile(make_shipment(), _scenario_boxes())

    assert result.local_applied is True
    assert result.remote_applied is False
    assert any("connectivity lost" in e for e in result.remote_errors)
    assert len(local.get_boxes("CS0001")) == 2
    assert len(remote.boxes) == 1


def test_remote_unreachable_error_stops_remote_leg(local, remote, online):
    remote.failures["upsert_box"] = RemoteUnreachable("socket closed")
    executor = ReconciliationExecutor(local, remote, online)

    result = executor.reconcile(make_shipment(), _scenario_boxes())

    assert result.local_applied and not result.remote_applied
    assert "socket closed" in result.remote_errors
    # Nothing else reaches the remote once the leg is down
    assert [c[0] for c in remote.calls].count("upsert_box") == 1
    assert not any(c[0] == "upsert_product" for c in remote.calls)


def test_remote_timeout_stops_remote_leg(local, remote, online):
    remote.failures["upsert_box"] = RemoteOperationTimeout("deadline exceeded")
    executor = ReconciliationExecutor(local, remote, online)

    result = executor.reconcile(make_shipment(), _scenario_boxes())

    assert result.local_applied is True
    assert result.remote_applied is False
    assert "deadline exceeded" in result.remote_errors
    assert len(local.get_boxes("CS0001")) == 2
    assert [c[0] for c in remote.calls].count("upsert_box") == 1
    assert not any(c[0] == "upsert_product" for c in remote.calls)


def test_other_remote_error_fails_only_that_write(local, remote, online):
    remote.failures["upsert_box"] = RemoteStoreError("invalid argument")
    executor = ReconciliationExecutor(local, remote, online)

    result = executor.reconcile(make_shipment(), _scenario_boxes())

    assert not result.remote_applied
    assert [c[0] for c in remote.calls].count("upsert_box") == 2
    assert any(c[0] == "upsert_product" for c in remote.calls)


def test_remote_leg_applied_only_without_failures(remote, online):
    leg = RemoteLeg(remote, online)
    assert leg.run("save", lambda store: None) is True
    assert leg.applied
    leg.fail("sweep failed")
    assert not leg.applied


# --------------------------------------------------------------------
# LOCAL FAILURE TESTS
# --------------------------------------------------------------------
def test_local_write_failure_is_fatal(local, remote, online, monkeypatch):
    def broken_upsert(shipment):
        raise LocalStoreError("database is locked")

    monkeypatch.setattr(local, "upsert_shipment", broken_upsert)
    executor = ReconciliationExecutor(local, remote, online)

    with pytest.raises(LocalStoreError) as excinfo:
        executor.reconcile(make_shipment(), [])

    assert excinfo.value.result is not None
    assert excinfo.value.result.local_applied is False
    assert remote.calls == []


def test_local_delete_failure_continues_siblings(local, remote, online, monkeypatch):
    seed_tree(local)
    local.upsert_box(Box(id="B2", shipment_id="CS0001", box_number="Box 2"))
    original = local.delete_box

    def flaky_delete_box(shipment_id, box_id):
        if box_id == "B1":
            raise LocalStoreError("disk I/O error")
        original(shipment_id, box_id)

    monkeypatch.setattr(local, "delete_box", flaky_delete_box)
    executor = ReconciliationExecutor(local, remote, online)

    with pytest.raises(LocalStoreError, match="disk I/O error") as excinfo:
        executor.reconcile(make_shipment(), [])

    result = excinfo.value.result
    assert result.boxes.failed == 1
    assert result.boxes.deleted == 1
    assert [b.id for b in local.get_boxes("CS0001")] == ["B1"]


# --------------------------------------------------------------------
# STATUS UPDATE TESTS
# --------------------------------------------------------------------
def test_update_status_writes_both_stores(local, remote, online):
    seed_tree(local)
    seed_tree(remote)
    executor = ReconciliationExecutor(local, remote, online)

    result = executor.update_status("CS0001", "in_transit")

    assert result.remote_applied
    assert local.get_shipment("CS0001").unwrap().status == "in_transit"
    assert remote.shipments["CS0001"].status == "in_transit"


def test_update_status_rejects_unknown_status(local, online):
    with pytest.raises(ValueError):
        ReconciliationExecutor(local, None, online).update_status("CS0001", "lost")
