"""Cloud Firestore gateway mirroring the local store.

This module talks to Cloud Firestore through the ``firebase_admin`` SDK.
Every record lives under the signed-in user's document::

    users/{uid}/shipments/{invoice_number}
    users/{uid}/shipments/{invoice_number}/boxes/{box_id}
    users/{uid}/shipments/{invoice_number}/boxes/{box_id}/products/{product_id}
    users/{uid}/{master collection}/{id}

Writes use merge semantics so a repeated call is harmless. Client errors are
translated into :mod:`shipment_sync.errors` so callers never see SDK types.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Callable, TypeVar

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions

from shipment_sync.errors import (
    RemoteOperationTimeout,
    RemoteStoreError,
    RemoteUnauthorized,
    RemoteUnreachable,
)
from shipment_sync.model import (
    MASTER_COLLECTIONS,
    Box,
    Lookup,
    MasterRecord,
    Product,
    Shipment,
    utc_now,
    validate_status,
)

logger = logging.getLogger(__name__)

APP_NAME = "shipment-sync"
DEFAULT_TIMEOUT = 8.0  # seconds per remote call

SHIPMENTS = "shipments"
BOXES = "boxes"
PRODUCTS = "products"

R = TypeVar("R")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _to_document(record: Any, **extra: Any) -> dict[str, Any]:
    """Serialise a dataclass record to a camelCase Firestore document."""
    document = {_camel(f.name): getattr(record, f.name) for f in dataclasses.fields(record)}
    document.update(extra)
    return document


def _from_document(record_type: type, data: dict[str, Any], **overrides: Any) -> Any:
    """Build a record from a document, ignoring keys the record does not know.

    A document missing a required field, or holding a value the record
    rejects, raises :class:`RemoteStoreError` naming the document.
    """
    values: dict[str, Any] = {}
    for f in dataclasses.fields(record_type):
        key = _camel(f.name)
        if key in data and data[key] is not None:
            values[f.name] = data[key]
    values.update(overrides)
    try:
        return record_type(**values)
    except (TypeError, ValueError) as exc:
        name = overrides.get("id") or overrides.get("invoice_number") or "?"
        raise RemoteStoreError(
            f"Malformed {record_type.__name__} document {name}: {exc}"
        ) from exc


class FirestoreRemoteStore:
    """Remote mirror of the local store, scoped to one authenticated user."""

    def __init__(
        self,
        client: Any,
        user_id: str | None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.client = client
        self.user_id = user_id
        self.timeout = timeout

    @classmethod
    def from_credentials(
        cls,
        credentials_path: str | None,
        user_id: str | None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> "FirestoreRemoteStore":
        """Initialise (or reuse) the named Firebase app and wrap its client."""
        try:
            app = firebase_admin.get_app(APP_NAME)
        except ValueError:
            cred = (
                credentials.Certificate(credentials_path)
                if credentials_path
                else credentials.ApplicationDefault()
            )
            app = firebase_admin.initialize_app(cred, name=APP_NAME)
            logger.info("Firebase app %s initialised", APP_NAME)
        return cls(firestore.client(app), user_id, timeout=timeout)

    # ------------------------------------------------------------------
    # Session helpers
    # ------------------------------------------------------------------
    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    def requires_authenticated_user(self) -> bool:
        return True

    def _user_doc(self) -> Any:
        return self.client.collection("users").document(self.user_id)

    def _shipments(self) -> Any:
        return self._user_doc().collection(SHIPMENTS)

    def _boxes(self, shipment_id: str) -> Any:
        return self._shipments().document(shipment_id).collection(BOXES)

    def _products(self, shipment_id: str, box_id: str) -> Any:
        return self._boxes(shipment_id).document(box_id).collection(PRODUCTS)

    def _call(self, action: str, operation: Callable[[], R]) -> R:
        """Run one Firestore operation and translate its failures."""
        if not self.is_authenticated:
            raise RemoteUnauthorized(f"Cannot {action}: user not authenticated")
        try:
            return operation()
        except google_exceptions.DeadlineExceeded as exc:
            raise RemoteOperationTimeout(f"Timed out trying to {action}") from exc
        except (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied) as exc:
            raise RemoteUnauthorized(f"Not allowed to {action}: {exc}") from exc
        except (google_exceptions.ServiceUnavailable, google_exceptions.RetryError) as exc:
            raise RemoteUnreachable(f"Cloud unavailable while trying to {action}: {exc}") from exc
        except google_exceptions.GoogleAPICallError as exc:
            raise RemoteStoreError(f"Failed to {action}: {exc}") from exc
        except OSError as exc:  # Transport-level failures (DNS, socket resets)
            raise RemoteUnreachable(f"Network error while trying to {action}: {exc}") from exc

    def _set(self, ref: Any, document: dict[str, Any]) -> None:
        ref.set(document, merge=True, timeout=self.timeout)

    def _delete_all(self, collection: Any) -> int:
        deleted = 0
        for ref in collection.list_documents(timeout=self.timeout):
            ref.delete(timeout=self.timeout)
            deleted += 1
        return deleted

    # ------------------------------------------------------------------
    # Shipments
    # ------------------------------------------------------------------
    def get_shipment(self, invoice_number: str) -> Lookup[Shipment]:
        snapshot = self._call(
            "read shipment",
            lambda: self._shipments().document(invoice_number).get(timeout=self.timeout),
        )
        if not snapshot.exists:
            return Lookup.miss()
        data = snapshot.to_dict() or {}
        return Lookup.hit(
            _from_document(Shipment, data, invoice_number=data.get("invoiceNumber") or snapshot.id)
        )

    def list_shipments(self, status: str | None = None) -> list[Shipment]:
        wanted = validate_status(status) if status is not None else None
        snapshots = self._call(
            "list shipments", lambda: list(self._shipments().stream(timeout=self.timeout))
        )
        shipments = []
        for snapshot in snapshots:
            data = snapshot.to_dict() or {}
            shipment = _from_document(
                Shipment, data, invoice_number=data.get("invoiceNumber") or snapshot.id
            )
            if wanted is None or shipment.status == wanted:
                shipments.append(shipment)
        return shipments

    def upsert_shipment(self, shipment: Shipment) -> None:
        document = _to_document(shipment, userId=self.user_id)
        self._call(
            "save shipment",
            lambda: self._set(self._shipments().document(shipment.invoice_number), document),
        )
        logger.debug("Shipment %s saved to cloud", shipment.invoice_number)

    def update_shipment_status(self, invoice_number: str, status: str) -> None:
        document = {"status": validate_status(status), "updatedAt": utc_now()}
        self._call(
            "update shipment status",
            lambda: self._set(self._shipments().document(invoice_number), document),
        )

    def delete_shipment(self, invoice_number: str) -> None:
        """Delete the shipment document and everything beneath it."""

        def _delete() -> None:
            boxes = self._boxes(invoice_number)
            for box_ref in boxes.list_documents(timeout=self.timeout):
                self._delete_all(box_ref.collection(PRODUCTS))
                box_ref.delete(timeout=self.timeout)
            self._shipments().document(invoice_number).delete(timeout=self.timeout)

        self._call("delete shipment", _delete)
        logger.debug("Shipment %s deleted from cloud", invoice_number)

    # ------------------------------------------------------------------
    # Boxes
    # ------------------------------------------------------------------
    def get_boxes(self, shipment_id: str) -> list[Box]:
        snapshots = self._call(
            "read boxes", lambda: list(self._boxes(shipment_id).stream(timeout=self.timeout))
        )
        return [
            _from_document(Box, s.to_dict() or {}, id=s.id, shipment_id=shipment_id)
            for s in snapshots
        ]

    def upsert_box(self, box: Box) -> None:
        document = _to_document(box, userId=self.user_id)
        self._call(
            "save box",
            lambda: self._set(self._boxes(box.shipment_id).document(box.id), document),
        )
        logger.debug("Box %s saved to cloud", box.id)

    def delete_box(self, shipment_id: str, box_id: str) -> None:
        self._call(
            "delete box",
            lambda: self._boxes(shipment_id).document(box_id).delete(timeout=self.timeout),
        )
        logger.debug("Box %s deleted from cloud", box_id)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------
    def get_products(self, shipment_id: str, box_id: str) -> list[Product]:
        snapshots = self._call(
            "read products",
            lambda: list(self._products(shipment_id, box_id).stream(timeout=self.timeout)),
        )
        return [
            _from_document(Product, s.to_dict() or {}, id=s.id, box_id=box_id)
            for s in snapshots
        ]

    def upsert_product(self, shipment_id: str, product: Product) -> None:
        document = _to_document(product, shipmentId=shipment_id, userId=self.user_id)
        self._call(
            "save product",
            lambda: self._set(
                self._products(shipment_id, product.box_id).document(product.id), document
            ),
        )
        logger.debug("Product %s saved to cloud", product.id)

    def delete_product(self, shipment_id: str, box_id: str, product_id: str) -> None:
        self._call(
            "delete product",
            lambda: self._products(shipment_id, box_id)
            .document(product_id)
            .delete(timeout=self.timeout),
        )
        logger.debug("Product %s deleted from cloud", product_id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------
    def delete_orphans(self) -> tuple[int, int]:
        """Delete boxes and products left under missing parent documents.

        ``list_documents`` also yields references to documents that no longer
        exist but still own subcollections, which is exactly what a parent
        deleted without its children looks like in Firestore.
        """

        def _sweep() -> tuple[int, int]:
            boxes_removed = products_removed = 0
            for shipment_ref in self._shipments().list_documents(timeout=self.timeout):
                shipment_exists = shipment_ref.get(timeout=self.timeout).exists
                for box_ref in shipment_ref.collection(BOXES).list_documents(
                    timeout=self.timeout
                ):
                    box_exists = box_ref.get(timeout=self.timeout).exists
                    if shipment_exists and box_exists:
                        continue
                    products_removed += self._delete_all(box_ref.collection(PRODUCTS))
                    if box_exists:
                        box_ref.delete(timeout=self.timeout)
                        boxes_removed += 1
            return boxes_removed, products_removed

        return self._call("clean up orphans", _sweep)

    # ------------------------------------------------------------------
    # Master data
    # ------------------------------------------------------------------
    def list_master(self, collection: str) -> list[MasterRecord]:
        record_type = MASTER_COLLECTIONS.get(collection)
        if record_type is None:
            raise ValueError(f"Unknown master data collection: {collection}")
        snapshots = self._call(
            f"list {collection}",
            lambda: list(self._user_doc().collection(collection).stream(timeout=self.timeout)),
        )
        return [_from_document(record_type, s.to_dict() or {}, id=s.id) for s in snapshots]

    def upsert_master(self, collection: str, record: MasterRecord) -> None:
        if collection not in MASTER_COLLECTIONS:
            raise ValueError(f"Unknown master data collection: {collection}")
        document = _to_document(record, userId=self.user_id)
        self._call(
            f"save {collection}",
            lambda: self._set(
                self._user_doc().collection(collection).document(record.id), document
            ),
        )


__all__ = ["APP_NAME", "FirestoreRemoteStore"]
