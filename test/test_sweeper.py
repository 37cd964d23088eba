import pytest
from conftest import make_shipment, seed_tree

from shipment_sync.errors import LocalStoreError, RemoteUnreachable
from shipment_sync.model import Box, Product
from shipment_sync.sweeper import OrphanSweeper, SweepScope


# --------------------------------------------------------------------
# LOCAL ORPHAN TESTS
# --------------------------------------------------------------------
def test_sweep_removes_only_orphaned_product(local):
    seed_tree(local)
    local.upsert_product("CS0001", Product(id="P-ORPHAN", box_id="GONE", type="Rose"))

    report = OrphanSweeper(local).sweep()

    assert report.local_products == 1
    assert report.local_boxes == 0
    assert [p.id for p in local.get_products("CS0001", "B1")] == ["P1"]

    again = OrphanSweeper(local).sweep()
    assert again.total == 0


def test_sweep_removes_box_without_shipment_then_its_products(local):
    local.upsert_box(Box(id="B9", shipment_id="MISSING", box_number="Box 9"))
    local.upsert_product("MISSING", Product(id="P9", box_id="B9", type="Rose"))

    report = OrphanSweeper(local).sweep()

    assert (report.local_boxes, report.local_products) == (1, 1)
    assert local.counts()["products"] == 0


def test_local_failure_propagates(local):
    local.close()
    with pytest.raises(LocalStoreError):
        OrphanSweeper(local).sweep()


# --------------------------------------------------------------------
# REMOTE SWEEP TESTS
# --------------------------------------------------------------------
def test_remote_sweep_skipped_when_unreachable(local, remote, offline):
    report = OrphanSweeper(local, remote, offline).sweep()
    assert report.remote_swept is False
    assert remote.calls == []


def test_remote_keys_converge_on_local(local, remote, online):
    seed_tree(local)
    seed_tree(remote)
    # Left behind remotely by an earlier pass that lost connectivity
    remote.upsert_box(Box(id="B-STALE", shipment_id="CS0001", box_number="Old"))
    remote.upsert_product("CS0001", Product(id="P-STALE", box_id="B-STALE", type="Rose"))
    remote.upsert_product("CS0001", Product(id="P-EXTRA", box_id="B1", type="Lily"))

    report = OrphanSweeper(local, remote, online).sweep(SweepScope(shipment_id="CS0001"))

    assert report.remote_swept
    assert (report.remote_boxes, report.remote_products) == (1, 2)
    assert set(remote.boxes) == {("CS0001", "B1")}
    assert set(remote.products) == {("CS0001", "B1", "P1")}


def test_convergence_skipped_for_shipment_missing_locally(local, remote, online):
    seed_tree(remote)
    report = OrphanSweeper(local, remote, online).sweep(SweepScope(shipment_id="CS0001"))
    assert report.remote_boxes == 0
    assert ("CS0001", "B1") in remote.boxes


def test_remote_failure_is_reported_not_raised(local, remote, online):
    remote.failures["delete_orphans"] = RemoteUnreachable("deadline exceeded")
    local.upsert_shipment(make_shipment())

    report = OrphanSweeper(local, remote, online).sweep()

    assert report.remote_swept is False
    assert report.remote_errors == ["deadline exceeded"]
