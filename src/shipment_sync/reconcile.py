"""Apply an editor's resubmitted box/product tree to both stores.

A reconciliation pass runs strictly in order: box diff against the local
store, shipment upsert, box updates (each followed by its product pass),
box adds (followed by their products), then box deletes (products first),
and finally an orphan sweep for the shipment. Every write goes to the
local store first and to the remote store only while the remote leg is
usable. Local failures abort the pass; remote failures are recorded.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from shipment_sync.compare import (
    BOX_FIELDS,
    ChildDiff,
    diff_boxes,
    diff_products,
    fields_differ,
)
from shipment_sync.connectivity import ConnectivityOracle
from shipment_sync.errors import (
    LocalStoreError,
    RemoteStoreError,
    RemoteUnauthorized,
    RemoteUnreachable,
)
from shipment_sync.local_store import LocalStore
from shipment_sync.model import (
    Box,
    BoxInput,
    Product,
    ProductInput,
    ReconcileResult,
    Shipment,
    utc_now,
    validate_status,
)
from shipment_sync.store import RemoteShipmentStore, ShipmentStore
from shipment_sync.sweeper import OrphanSweeper, SweepScope

logger = logging.getLogger(__name__)

StoreOperation = Callable[[ShipmentStore], None]


def mint_id() -> str:
    """Return a fresh opaque id for a box or product."""
    return uuid.uuid4().hex


class RemoteLeg:
    """Tracks whether the remote half of one pass is still usable.

    The leg is checked once when the pass starts and the oracle is asked
    again before every call. The first connectivity, authorisation or
    timeout failure marks the leg down for the rest of the pass; any other
    remote error only fails the call that raised it.
    """

    def __init__(
        self, remote: RemoteShipmentStore | None, oracle: ConnectivityOracle
    ) -> None:
        self.remote = remote
        self.oracle = oracle
        self.errors: list[str] = []
        self.failed = 0
        self.skipped = 0
        self.available = self._check()

    def _check(self) -> bool:
        if self.remote is None:
            self.errors.append("no remote store configured")
            return False
        if self.remote.requires_authenticated_user() and not self.remote.is_authenticated:
            self.errors.append("remote store requires an authenticated user")
            return False
        if not self.oracle.is_reachable():
            self.errors.append("remote store unreachable")
            return False
        return True

    def _mark_down(self, reason: str) -> None:
        self.available = False
        self.errors.append(reason)
        logger.warning("Remote leg unavailable for the rest of this pass: %s", reason)

    def fail(self, reason: str) -> None:
        """Record a remote failure reported by a collaborator."""
        self.failed += 1
        self.errors.append(reason)

    @property
    def applied(self) -> bool:
        return self.available and self.failed == 0 and self.skipped == 0

    def run(self, action: str, operation: StoreOperation) -> bool:
        if not self.available:
            self.skipped += 1
            return False
        if not self.oracle.is_reachable():
            self.skipped += 1
            self._mark_down(f"connectivity lost before {action}")
            return False
        try:
            operation(self.remote)
        except (RemoteUnreachable, RemoteUnauthorized) as exc:
            self.failed += 1
            self._mark_down(str(exc))
            return False
        except RemoteStoreError as exc:
            self.failed += 1
            self.errors.append(str(exc))
            logger.warning("Remote %s failed: %s", action, exc)
            return False
        return True


@dataclass(slots=True)
class _Pass:
    """Mutable state of one reconciliation pass."""

    shipment_id: str
    leg: RemoteLeg
    result: ReconcileResult
    local_delete_errors: list[str] = field(default_factory=list)


def _box_from_input(
    shipment_id: str, submitted: BoxInput, created_at: datetime | None = None
) -> Box:
    now = utc_now()
    return Box(
        id=submitted.id or mint_id(),
        shipment_id=shipment_id,
        box_number=submitted.box_number,
        length=submitted.length,
        width=submitted.width,
        height=submitted.height,
        created_at=created_at or now,
        updated_at=now if created_at else None,
    )


def _product_from_input(
    box_id: str, submitted: ProductInput, created_at: datetime | None = None
) -> Product:
    now = utc_now()
    return Product(
        id=submitted.id or mint_id(),
        box_id=box_id,
        type=submitted.type,
        description=submitted.description,
        weight=submitted.weight,
        rate=submitted.rate,
        quantity=submitted.quantity,
        flower_type=submitted.flower_type,
        has_stems=submitted.has_stems,
        approx_quantity=submitted.approx_quantity,
        created_at=created_at or now,
        updated_at=now if created_at else None,
    )


class ReconciliationExecutor:
    """Diff-then-apply engine for one shipment's box/product tree."""

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

    def reconcile(
        self, shipment: Shipment, boxes: list[BoxInput] | None
    ) -> ReconcileResult:
        """Persist ``shipment`` and bring its persisted boxes in line with ``boxes``.

        ``boxes=None`` leaves the box tree untouched; ``[]`` deletes every box.
        Ids minted for new boxes and products are written back onto the
        submitted inputs.
        """
        sid = shipment.invoice_number
        state = _Pass(
            shipment_id=sid,
            leg=RemoteLeg(self.remote, self.oracle),
            result=ReconcileResult(shipment_id=sid),
        )
        if not state.leg.available:
            logger.info("Reconciling %s locally only (%s)", sid, state.leg.errors[-1])

        # Diff before any write so an invalid submission changes nothing
        diff = self._diff_boxes(sid, boxes) if boxes is not None else None

        existing = self.local.get_shipment(sid)
        if existing.found:
            shipment.created_at = existing.value.created_at
            shipment.updated_at = utc_now()
        self._write(state, "save shipment", lambda store: store.upsert_shipment(shipment))

        if diff is None:
            logger.info("No box tree submitted for %s; existing boxes kept", sid)
        else:
            self._apply_box_diff(state, diff)

        if state.local_delete_errors:
            raise LocalStoreError(
                f"Failed to delete {len(state.local_delete_errors)} record(s) locally for "
                f"{sid}: {state.local_delete_errors[0]}",
                result=self._finish(state),
            )

        result = self._finish(state)
        logger.info(
            "Reconciled %s: boxes %s, products %s, remote %s",
            sid,
            result.boxes.as_dict(),
            result.products.as_dict(),
            "applied" if result.remote_applied else "skipped",
        )
        return result

    def update_status(self, invoice_number: str, status: str) -> ReconcileResult:
        """Single-field status change; bypasses tree diffing."""
        status = validate_status(status)
        state = _Pass(
            shipment_id=invoice_number,
            leg=RemoteLeg(self.remote, self.oracle),
            result=ReconcileResult(shipment_id=invoice_number),
        )
        self._write(
            state,
            "update shipment status",
            lambda store: store.update_shipment_status(invoice_number, status),
        )
        return self._finish(state)

    # ------------------------------------------------------------------
    # Box level
    # ------------------------------------------------------------------
    def _diff_boxes(self, sid: str, submitted: list[BoxInput]) -> ChildDiff[Box, BoxInput]:
        # Forced-local read: the remote copy may lag behind in-flight local writes
        diff = diff_boxes(
            self.local.get_boxes(sid),
            submitted,
            products_of=lambda box: self.local.get_products(sid, box.id),
        )
        logger.debug("Box diff for %s: %s", sid, diff.summary)
        return diff

    def _apply_box_diff(self, state: _Pass, diff: ChildDiff[Box, BoxInput]) -> None:
        sid = state.shipment_id
        counts = state.result.boxes

        # A box is an update when its own fields or any of its products changed;
        # the box record itself is only rewritten when its own fields changed
        for current, box_input in diff.to_update:
            if fields_differ(current, box_input, BOX_FIELDS):
                box = _box_from_input(sid, box_input, created_at=current.created_at)
                self._write(state, "save box", lambda store, b=box: store.upsert_box(b))
            counts.updated += 1
            self._reconcile_products(state, current.id, box_input.products)

        for box_input in diff.to_add:
            box = _box_from_input(sid, box_input)
            box_input.id = box.id
            self._write(state, "save box", lambda store, b=box: store.upsert_box(b))
            counts.added += 1
            for product_input in box_input.products or []:
                self._add_product(state, box.id, product_input)

        for box in diff.to_delete:
            self._delete_box_tree(state, box)

        self._sweep(state)

    def _delete_box_tree(self, state: _Pass, box: Box) -> None:
        """Delete a box's products from both stores, then the box itself."""
        sid = state.shipment_id
        products_left = False
        for product in self.local.get_products(sid, box.id):
            if not self._delete_product(state, product):
                products_left = True

        if products_left:
            # The box stays until every product is gone; never leave live orphans
            state.result.boxes.failed += 1
            state.local_delete_errors.append(f"box {box.id} still has products")
            return

        try:
            self.local.delete_box(sid, box.id)
        except LocalStoreError as exc:
            state.result.boxes.failed += 1
            state.local_delete_errors.append(str(exc))
            return
        state.leg.run("delete box", lambda store: store.delete_box(sid, box.id))
        state.result.boxes.deleted += 1

    def _sweep(self, state: _Pass) -> None:
        try:
            report = self.sweeper.sweep(
                SweepScope(shipment_id=state.shipment_id, include_remote=state.leg.available)
            )
        except LocalStoreError as exc:
            exc.result = self._finish(state, local_applied=False)
            raise
        for error in report.remote_errors:
            state.leg.fail(error)

    # ------------------------------------------------------------------
    # Product level
    # ------------------------------------------------------------------
    def _reconcile_products(
        self, state: _Pass, box_id: str, submitted: list[ProductInput] | None
    ) -> None:
        if submitted is None:
            return
        sid = state.shipment_id
        counts = state.result.products

        diff = diff_products(self.local.get_products(sid, box_id), submitted)
        logger.debug("Product diff for box %s: %s", box_id, diff.summary)

        for current, product_input in diff.to_update:
            product = _product_from_input(box_id, product_input, created_at=current.created_at)
            self._write(
                state, "save product", lambda store, p=product: store.upsert_product(sid, p)
            )
            counts.updated += 1

        for product_input in diff.to_add:
            self._add_product(state, box_id, product_input)

        for product in diff.to_delete:
            self._delete_product(state, product)

    def _add_product(self, state: _Pass, box_id: str, product_input: ProductInput) -> None:
        sid = state.shipment_id
        product = _product_from_input(box_id, product_input)
        product_input.id = product.id
        self._write(state, "save product", lambda store: store.upsert_product(sid, product))
        state.result.products.added += 1

    def _delete_product(self, state: _Pass, product: Product) -> bool:
        sid = state.shipment_id
        try:
            self.local.delete_product(sid, product.box_id, product.id)
        except LocalStoreError as exc:
            state.result.products.failed += 1
            state.local_delete_errors.append(str(exc))
            return False
        state.leg.run(
            "delete product",
            lambda store: store.delete_product(sid, product.box_id, product.id),
        )
        state.result.products.deleted += 1
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _write(self, state: _Pass, action: str, operation: StoreOperation) -> None:
        """Apply one upsert locally (fatal on failure), then remotely."""
        try:
            operation(self.local)
        except LocalStoreError as exc:
            exc.result = self._finish(state, local_applied=False)
            raise
        state.leg.run(action, operation)

    def _finish(self, state: _Pass, local_applied: bool = True) -> ReconcileResult:
        result = state.result
        result.local_applied = local_applied and not state.local_delete_errors
        result.remote_applied = state.leg.applied
        for error in state.leg.errors:
            if error not in result.remote_errors:
                result.remote_errors.append(error)
        return result


__all__ = ["ReconciliationExecutor", "RemoteLeg", "mint_id"]
