"""Bulk one-directional replication between the local and remote stores.

Used at login (pull) and on manual request (pull or push). Collections are
copied parents first: master data, shipments, boxes, products. Every write
is an upsert keyed by a stable id, so a run can be repeated safely.

State machine::

    IDLE -> RUNNING(progress 0..100) -> COMPLETED | FAILED -> IDLE
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from shipment_sync.connectivity import ConnectivityOracle
from shipment_sync.errors import (
    LocalStoreError,
    RemoteStoreError,
    RemoteUnauthorized,
    RemoteUnreachable,
    SyncInProgress,
    SyncUnavailable,
)
from shipment_sync.local_store import LocalStore
from shipment_sync.model import (
    MASTER_COLLECTIONS,
    CollectionTally,
    SyncDirection,
    SyncProgress,
    SyncReport,
    SyncState,
    utc_now,
)
from shipment_sync.store import RemoteShipmentStore, ShipmentStore
from shipment_sync.sweeper import OrphanSweeper, SweepScope

logger = logging.getLogger(__name__)

ProgressSink = Callable[[SyncProgress], None]

# Progress bands per phase
_MASTER_BAND = (0, 30)
_SHIPMENT_BAND = (30, 50)
_BOX_BAND = (50, 75)
_PRODUCT_BAND = (75, 100)


def _band(band: tuple[int, int], done: int, total: int) -> int:
    low, high = band
    if total <= 0:
        return high
    return low + (high - low) * done // total


class SyncCoordinator:
    def __init__(
        self,
        local: LocalStore,
        remote: RemoteShipmentStore | None,
        oracle: ConnectivityOracle,
        sweeper: OrphanSweeper | None = None,
    ) -> None:
        self.local = local
        self.remote = remote
        self.oracle = oracle
        self.sweeper = sweeper or OrphanSweeper(local, remote, oracle)
        self.state = SyncState.IDLE
        self.last_report: SyncReport | None = None
        self._last_percent = 0
        self._running = threading.Lock()

    def pull_from_remote(self, on_progress: ProgressSink | None = None) -> SyncReport:
        """Copy every remote collection into the local store."""
        return self._run("pull", self.remote, self.local, on_progress)

    def push_to_remote(self, on_progress: ProgressSink | None = None) -> SyncReport:
        """Copy every local collection into the remote store."""
        return self._run("push", self.local, self.remote, on_progress)

    # ------------------------------------------------------------------
    # Run control
    # ------------------------------------------------------------------
    def _ensure_available(self) -> None:
        if self.remote is None:
            raise SyncUnavailable("No remote store configured")
        if self.remote.requires_authenticated_user() and not self.remote.is_authenticated:
            raise SyncUnavailable("Sign in before syncing with the cloud")
        if not self.oracle.is_reachable():
            raise SyncUnavailable("Cloud store is unreachable; check your connection")

    def _run(
        self,
        direction: SyncDirection,
        source: ShipmentStore,
        target: ShipmentStore,
        on_progress: ProgressSink | None,
    ) -> SyncReport:
        self._ensure_available()
        if not self._running.acquire(blocking=False):
            raise SyncInProgress(f"A sync is already running ({self.state.value})")

        report = SyncReport(direction=direction)
        try:
            self._emit(report, SyncState.RUNNING, 0, f"Starting {direction}", on_progress)
            try:
                self._copy_all(report, source, target, on_progress)
                if direction == "pull":
                    self.sweeper.sweep(SweepScope(include_remote=False))
                self.local.set_setting(f"last_{direction}_at", utc_now().isoformat())
            except RemoteStoreError as exc:
                report.reason = str(exc)
                logger.error("Sync %s failed: %s", direction, exc)
                self._emit(report, SyncState.FAILED, self._last_percent, str(exc), on_progress)
                return report
            except LocalStoreError as exc:
                report.reason = str(exc)
                logger.error("Sync %s failed on the local store: %s", direction, exc)
                self._emit(report, SyncState.FAILED, self._last_percent, str(exc), on_progress)
                raise
            except Exception as exc:
                report.reason = str(exc)
                logger.exception("Sync %s aborted", direction)
                self._emit(report, SyncState.FAILED, self._last_percent, str(exc), on_progress)
                raise

            logger.info(
                "Sync %s completed: %d records copied, %d failed",
                direction,
                report.copied,
                report.failed,
            )
            self._emit(report, SyncState.COMPLETED, 100, f"{direction} completed", on_progress)
            return report
        finally:
            report.finished_at = utc_now()
            self.last_report = report
            self.state = SyncState.IDLE
            self._running.release()

    def _emit(
        self,
        report: SyncReport,
        state: SyncState,
        percent: int,
        message: str,
        on_progress: ProgressSink | None,
    ) -> None:
        self.state = state
        report.state = state
        self._last_percent = percent
        if on_progress is None:
            return
        try:
            on_progress(SyncProgress(state=state, percent=percent, message=message))
        except Exception:  # Progress sinks are advisory
            logger.warning("Progress callback raised; ignoring", exc_info=True)

    # ------------------------------------------------------------------
    # Copying
    # ------------------------------------------------------------------
    def _copy_one(
        self, tally: CollectionTally, label: str, write: Callable[[], None]
    ) -> None:
        try:
            write()
        except (RemoteUnreachable, RemoteUnauthorized):
            raise  # Connectivity loss ends the run
        except RemoteStoreError as exc:
            tally.failed += 1
            logger.warning("Failed to sync %s: %s", label, exc)
            return
        tally.copied += 1

    def _copy_all(
        self,
        report: SyncReport,
        source: ShipmentStore,
        target: ShipmentStore,
        on_progress: ProgressSink | None,
    ) -> None:
        def emit(band: tuple[int, int], done: int, total: int, message: str) -> None:
            self._emit(report, SyncState.RUNNING, _band(band, done, total), message, on_progress)

        collections = list(MASTER_COLLECTIONS)
        for index, collection in enumerate(collections):
            tally = report.tally(collection)
            for record in source.list_master(collection):
                self._copy_one(
                    tally,
                    f"{collection}/{record.id}",
                    lambda r=record, c=collection: target.upsert_master(c, r),
                )
            emit(_MASTER_BAND, index + 1, len(collections), f"Synced {collection}")

        shipments = source.list_shipments()
        tally = report.tally("shipments")
        for index, shipment in enumerate(shipments, start=1):
            self._copy_one(
                tally,
                f"shipment {shipment.invoice_number}",
                lambda s=shipment: target.upsert_shipment(s),
            )
            if index % 10 == 0 or index == len(shipments):
                message = f"Synced {index}/{len(shipments)} shipments"
                emit(_SHIPMENT_BAND, index, len(shipments), message)

        boxes = [
            box for shipment in shipments for box in source.get_boxes(shipment.invoice_number)
        ]
        tally = report.tally("boxes")
        for box in boxes:
            self._copy_one(tally, f"box {box.id}", lambda b=box: target.upsert_box(b))
        emit(_BOX_BAND, len(boxes), len(boxes), f"Synced {len(boxes)} boxes")

        tally = report.tally("products")
        for index, box in enumerate(boxes, start=1):
            for product in source.get_products(box.shipment_id, box.id):
                self._copy_one(
                    tally,
                    f"product {product.id}",
                    lambda p=product, sid=box.shipment_id: target.upsert_product(sid, p),
                )
            emit(_PRODUCT_BAND, index, len(boxes), f"Synced products of {index}/{len(boxes)} boxes")


__all__ = ["ProgressSink", "SyncCoordinator"]
