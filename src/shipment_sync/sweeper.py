"""Orphan cleanup for both stores.

An orphan is a box whose shipment no longer exists, or a product whose box
no longer exists. Sweeping is idempotent: a second run with no intervening
writes removes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from shipment_sync.connectivity import ConnectivityOracle
from shipment_sync.errors import RemoteStoreError
from shipment_sync.local_store import LocalStore
from shipment_sync.model import SweepReport
from shipment_sync.store import RemoteShipmentStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepScope:
    """What to sweep.

    With a ``shipment_id`` the remote sweep also removes that shipment's
    remote boxes and products whose ids are absent locally, so the two
    stores converge on the same keys.
    """

    shipment_id: str | None = None
    include_remote: bool = True


class OrphanSweeper:
    def __init__(
        self,
        local: LocalStore,
        remote: RemoteShipmentStore | None = None,
        oracle: ConnectivityOracle | None = None,
    ) -> None:
        self.local = local
        self.remote = remote
        self.oracle = oracle

    def _remote_usable(self) -> bool:
        if self.remote is None or self.oracle is None:
            return False
        if self.remote.requires_authenticated_user() and not self.remote.is_authenticated:
            return False
        return self.oracle.is_reachable()

    def sweep(self, scope: SweepScope | None = None) -> SweepReport:
        scope = scope or SweepScope()
        report = SweepReport()

        # Local failures propagate: local is the store of record
        report.local_boxes, report.local_products = self.local.delete_orphans()

        if scope.include_remote and self._remote_usable():
            try:
                report.remote_boxes, report.remote_products = self.remote.delete_orphans()
                if scope.shipment_id:
                    boxes, products = self._converge(scope.shipment_id)
                    report.remote_boxes += boxes
                    report.remote_products += products
                report.remote_swept = True
            except RemoteStoreError as exc:
                logger.warning("Remote orphan sweep skipped: %s", exc)
                report.remote_errors.append(str(exc))

        if report.total:
            logger.info(
                "Orphan sweep removed %d/%d local and %d/%d remote boxes/products",
                report.local_boxes,
                report.local_products,
                report.remote_boxes,
                report.remote_products,
            )
        return report

    def _converge(self, shipment_id: str) -> tuple[int, int]:
        """Delete remote children of ``shipment_id`` that are not held locally."""
        if not self.local.get_shipment(shipment_id).found:
            # Nothing local to converge on; never wipe a shipment this device lacks
            return 0, 0

        local_boxes = {box.id for box in self.local.get_boxes(shipment_id)}
        boxes_removed = products_removed = 0
        for remote_box in self.remote.get_boxes(shipment_id):
            remote_products = self.remote.get_products(shipment_id, remote_box.id)
            if remote_box.id in local_boxes:
                keep = {p.id for p in self.local.get_products(shipment_id, remote_box.id)}
            else:
                keep = set()
            for product in remote_products:
                if product.id not in keep:
                    self.remote.delete_product(shipment_id, remote_box.id, product.id)
                    products_removed += 1
            if remote_box.id not in local_boxes:
                self.remote.delete_box(shipment_id, remote_box.id)
                boxes_removed += 1
        return boxes_removed, products_removed


__all__ = ["OrphanSweeper", "SweepScope"]
