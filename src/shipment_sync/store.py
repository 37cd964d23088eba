"""Call shapes shared by the local and remote stores.

Child operations take the owning keys explicitly so both backends can be
driven by the same code; the remote store needs them to build document
paths.
"""

from __future__ import annotations

from typing import Protocol

from shipment_sync.model import Box, Lookup, MasterRecord, Product, Shipment


class ShipmentStore(Protocol):
    def get_shipment(self, invoice_number: str) -> Lookup[Shipment]: ...

    def list_shipments(self, status: str | None = None) -> list[Shipment]: ...

    def upsert_shipment(self, shipment: Shipment) -> None: ...

    def update_shipment_status(self, invoice_number: str, status: str) -> None: ...

    def delete_shipment(self, invoice_number: str) -> None: ...

    def get_boxes(self, shipment_id: str) -> list[Box]: ...

    def upsert_box(self, box: Box) -> None: ...

    def delete_box(self, shipment_id: str, box_id: str) -> None: ...

    def get_products(self, shipment_id: str, box_id: str) -> list[Product]: ...

    def upsert_product(self, shipment_id: str, product: Product) -> None: ...

    def delete_product(self, shipment_id: str, box_id: str, product_id: str) -> None: ...

    def delete_orphans(self) -> tuple[int, int]:
        """Remove children whose parent is gone; return (boxes, products) removed."""
        ...

    def list_master(self, collection: str) -> list[MasterRecord]: ...

    def upsert_master(self, collection: str, record: MasterRecord) -> None: ...


class RemoteShipmentStore(ShipmentStore, Protocol):
    @property
    def is_authenticated(self) -> bool: ...

    def requires_authenticated_user(self) -> bool: ...


__all__ = ["RemoteShipmentStore", "ShipmentStore"]
