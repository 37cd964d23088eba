"""Caller-facing API used by the editor layer, the runner and the CLI."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from shipment_sync.connectivity import ConnectivityOracle
from shipment_sync.errors import RemoteStoreError
from shipment_sync.local_store import LocalStore
from shipment_sync.model import (
    Box,
    BoxInput,
    Lookup,
    Product,
    ReadMode,
    ReconcileResult,
    Shipment,
    SweepReport,
    SyncReport,
    normalize_invoice_number,
)
from shipment_sync.reconcile import ReconciliationExecutor
from shipment_sync.store import RemoteShipmentStore, ShipmentStore
from shipment_sync.sweeper import OrphanSweeper, SweepScope
from shipment_sync.sync import ProgressSink, SyncCoordinator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BoxView:
    """A box together with its products, as shown to an editor."""

    box: Box
    products: list[Product] = field(default_factory=list)


class ShipmentService:
    def __init__(
        self,
        local: LocalStore,
        remote: RemoteShipmentStore | None,
        oracle: ConnectivityOracle,
    ) -> None:
        self.local = local
        self.remote = remote
        self.oracle = oracle
        self.sweeper = OrphanSweeper(local, remote, oracle)
        self.executor = ReconciliationExecutor(local, remote, oracle, self.sweeper)
        self.coordinator = SyncCoordinator(local, remote, oracle, self.sweeper)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def reconcile_shipment(
        self, shipment: Shipment, boxes: list[BoxInput] | None
    ) -> ReconcileResult:
        return self.executor.reconcile(shipment, boxes)

    def update_status(self, invoice_number: str, status: str) -> ReconcileResult:
        return self.executor.update_status(normalize_invoice_number(invoice_number), status)

    def delete_shipment(self, invoice_number: str) -> ReconcileResult:
        """Delete a shipment and its tree locally, then remotely when possible."""
        sid = normalize_invoice_number(invoice_number)
        result = ReconcileResult(shipment_id=sid)
        self.local.delete_shipment(sid)
        result.local_applied = True

        if self._remote_usable():
            try:
                self.remote.delete_shipment(sid)
                result.remote_applied = True
            except RemoteStoreError as exc:
                logger.warning("Shipment %s deleted locally only: %s", sid, exc)
                result.remote_errors.append(str(exc))
            # Safety net after a bulk remote delete
            report = self.sweeper.sweep(SweepScope())
            result.remote_errors.extend(report.remote_errors)
        else:
            result.remote_errors.append("remote store unavailable")
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def _remote_usable(self) -> bool:
        if self.remote is None:
            return False
        if self.remote.requires_authenticated_user() and not self.remote.is_authenticated:
            return False
        return self.oracle.is_reachable()

    def _read_store(self, read_mode: ReadMode) -> ShipmentStore:
        if read_mode is ReadMode.PREFER_REMOTE and self._remote_usable():
            return self.remote
        return self.local

    def get_shipment(
        self, invoice_number: str, read_mode: ReadMode = ReadMode.PREFER_REMOTE
    ) -> Lookup[Shipment]:
        sid = normalize_invoice_number(invoice_number)
        store = self._read_store(read_mode)
        if store is self.local:
            return self.local.get_shipment(sid)
        try:
            found = store.get_shipment(sid)
        except RemoteStoreError as exc:
            logger.warning("Falling back to local read of %s: %s", sid, exc)
            return self.local.get_shipment(sid)
        # A shipment saved offline may not have reached the cloud yet
        return found if found.found else self.local.get_shipment(sid)

    def get_boxes(
        self, invoice_number: str, read_mode: ReadMode = ReadMode.PREFER_REMOTE
    ) -> list[BoxView]:
        sid = normalize_invoice_number(invoice_number)
        store = self._read_store(read_mode)
        try:
            return self._load_boxes(store, sid)
        except RemoteStoreError as exc:
            logger.warning("Falling back to local boxes of %s: %s", sid, exc)
            return self._load_boxes(self.local, sid)

    @staticmethod
    def _load_boxes(store: ShipmentStore, shipment_id: str) -> list[BoxView]:
        return [
            BoxView(box=box, products=store.get_products(shipment_id, box.id))
            for box in store.get_boxes(shipment_id)
        ]

    # ------------------------------------------------------------------
    # Sync and maintenance
    # ------------------------------------------------------------------
    def pull_from_remote(self, progress_sink: ProgressSink | None = None) -> SyncReport:
        return self.coordinator.pull_from_remote(progress_sink)

    def push_to_remote(self, progress_sink: ProgressSink | None = None) -> SyncReport:
        return self.coordinator.push_to_remote(progress_sink)

    def sweep_orphans(self, scope: SweepScope | None = None) -> SweepReport:
        return self.sweeper.sweep(scope)

    def migration_status(self) -> dict[str, object]:
        """Compare local and cloud shipment counts to decide whether to push."""
        local_count = len(self.local.list_shipments())
        remote_count: int | None = None
        if self._remote_usable():
            try:
                remote_count = len(self.remote.list_shipments())
            except RemoteStoreError as exc:
                logger.warning("Could not count cloud shipments: %s", exc)
        return {
            "local_shipments": local_count,
            "remote_shipments": remote_count,
            "last_push_at": self.local.get_setting("last_push_at"),
            "needs_push": remote_count is not None and local_count > remote_count,
        }


__all__ = ["BoxView", "ShipmentService"]
