"""SQLite-backed local store.

The local store is the canonical, always-writable copy of every shipment,
box, product and master-data record on this device. One instance is shared
by all flows; every write is an ``INSERT OR REPLACE`` keyed by a stable id
so repeated or retried calls are safe. Box ids are scoped to their shipment
and product ids to their box, so child rows are keyed by the full path.

Foreign keys are declared for documentation but not enforced (SQLite
default), which is why :mod:`shipment_sync.sweeper` exists.
"""

from __future__ import annotations

import dataclasses
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from shipment_sync.errors import LocalStoreError
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

INVOICE_PREFIX = "CS"
AWB_PREFIX = "AWB"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS shipments (
    invoice_number TEXT PRIMARY KEY,
    shipper TEXT NOT NULL DEFAULT '',
    shipper_address TEXT,
    consignee TEXT NOT NULL DEFAULT '',
    consignee_address TEXT,
    client_ref TEXT,
    awb TEXT NOT NULL DEFAULT '',
    master_awb TEXT,
    house_awb TEXT,
    flight_no TEXT,
    flight_date INTEGER,
    discharge_airport TEXT,
    origin TEXT,
    destination TEXT,
    eta INTEGER,
    invoice_date INTEGER,
    date_of_issue INTEGER,
    place_of_receipt TEXT,
    sgst_no TEXT,
    iec_code TEXT,
    freight_terms TEXT,
    gross_weight REAL DEFAULT 0.0,
    invoice_title TEXT,
    status TEXT DEFAULT 'pending',
    created_at INTEGER NOT NULL,
    updated_at INTEGER
);
CREATE TABLE IF NOT EXISTS boxes (
    id TEXT NOT NULL,
    shipment_invoice_number TEXT NOT NULL,
    box_number TEXT NOT NULL,
    length REAL DEFAULT 0.0,
    width REAL DEFAULT 0.0,
    height REAL DEFAULT 0.0,
    created_at INTEGER NOT NULL,
    updated_at INTEGER,
    PRIMARY KEY (shipment_invoice_number, id),
    FOREIGN KEY (shipment_invoice_number) REFERENCES shipments (invoice_number)
);
CREATE TABLE IF NOT EXISTS products (
    id TEXT NOT NULL,
    shipment_invoice_number TEXT NOT NULL,
    box_id TEXT NOT NULL,
    type TEXT NOT NULL,
    description TEXT,
    weight REAL DEFAULT 0.0,
    rate REAL DEFAULT 0.0,
    quantity INTEGER DEFAULT 1,
    flower_type TEXT DEFAULT 'LOOSE FLOWERS',
    has_stems INTEGER DEFAULT 0,
    approx_quantity INTEGER DEFAULT 0,
    created_at INTEGER NOT NULL,
    updated_at INTEGER,
    PRIMARY KEY (shipment_invoice_number, box_id, id),
    FOREIGN KEY (shipment_invoice_number, box_id)
        REFERENCES boxes (shipment_invoice_number, id)
);
CREATE TABLE IF NOT EXISTS master_shippers (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    address TEXT NOT NULL DEFAULT '',
    phone TEXT,
    address_line1 TEXT,
    address_line2 TEXT,
    city TEXT,
    state TEXT,
    pincode TEXT,
    landmark TEXT
);
CREATE TABLE IF NOT EXISTS master_consignees (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    address TEXT NOT NULL DEFAULT '',
    phone TEXT,
    address_line1 TEXT,
    address_line2 TEXT,
    city TEXT,
    state TEXT,
    pincode TEXT,
    landmark TEXT
);
CREATE TABLE IF NOT EXISTS master_product_types (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    approx_quantity INTEGER NOT NULL DEFAULT 1
);
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at INTEGER
);
CREATE INDEX IF NOT EXISTS idx_shipments_status ON shipments (status);
CREATE INDEX IF NOT EXISTS idx_boxes_shipment ON boxes (shipment_invoice_number);
CREATE INDEX IF NOT EXISTS idx_products_box ON products (shipment_invoice_number, box_id);
"""

_SHIPMENT_DATE_FIELDS = ("flight_date", "eta", "invoice_date", "date_of_issue")
_NULL_DEFAULTS: dict[str, Any] = {"gross_weight": 0.0, "status": "pending"}


def _to_millis(value: datetime | None) -> int | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def _from_millis(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _shipment_to_row(shipment: Shipment) -> dict[str, Any]:
    row = dataclasses.asdict(shipment)
    for name in (*_SHIPMENT_DATE_FIELDS, "created_at", "updated_at"):
        row[name] = _to_millis(row[name])
    return row


def _row_to_shipment(row: sqlite3.Row) -> Shipment:
    data = {key: row[key] for key in row.keys()}
    for name in (*_SHIPMENT_DATE_FIELDS, "updated_at"):
        data[name] = _from_millis(data[name])
    data["created_at"] = _from_millis(data["created_at"]) or utc_now()
    # Older rows may carry NULL text columns
    for key, value in data.items():
        if value is None and key not in (*_SHIPMENT_DATE_FIELDS, "updated_at"):
            data[key] = _NULL_DEFAULTS.get(key, "")
    return Shipment(**data)


def _row_to_box(row: sqlite3.Row) -> Box:
    return Box(
        id=row["id"],
        shipment_id=row["shipment_invoice_number"],
        box_number=row["box_number"],
        length=row["length"] or 0.0,
        width=row["width"] or 0.0,
        height=row["height"] or 0.0,
        created_at=_from_millis(row["created_at"]) or utc_now(),
        updated_at=_from_millis(row["updated_at"]),
    )


def _row_to_product(row: sqlite3.Row) -> Product:
    return Product(
        id=row["id"],
        box_id=row["box_id"],
        type=row["type"],
        description=row["description"] or "",
        weight=row["weight"] or 0.0,
        rate=row["rate"] or 0.0,
        quantity=row["quantity"] if row["quantity"] is not None else 1,
        flower_type=row["flower_type"] or "",
        has_stems=bool(row["has_stems"]),
        approx_quantity=row["approx_quantity"] or 0,
        created_at=_from_millis(row["created_at"]) or utc_now(),
        updated_at=_from_millis(row["updated_at"]),
    )


def _next_number(last: str | None, prefix: str, width: int) -> str:
    number = 0
    if last:
        try:
            number = int(last[len(prefix):])
        except ValueError:
            number = 0
    return f"{prefix}{number + 1:0{width}d}"


class LocalStore:
    """Canonical single-device store for shipments and master data."""

    def __init__(self, path: str | Path = ":memory:") -> None:
        self.path = str(path)
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def initialize(self) -> tuple[int, int]:
        """Open the database, create the schema and sweep orphans.

        Returns the ``(boxes, products)`` removed by the opportunistic sweep.
        """
        with self._lock:
            if self._conn is None:
                if self.path != ":memory:":
                    Path(self.path).parent.mkdir(parents=True, exist_ok=True)
                try:
                    conn = sqlite3.connect(self.path, check_same_thread=False)
                    conn.row_factory = sqlite3.Row
                    conn.executescript(_SCHEMA)
                except sqlite3.Error as exc:
                    raise LocalStoreError(f"Failed to open local database: {exc}") from exc
                self._conn = conn
                logger.info("Local database ready at %s", self.path)
        removed = self.delete_orphans()
        if any(removed):
            logger.info(
                "Removed %d orphaned boxes and %d orphaned products on startup", *removed
            )
        return removed

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "LocalStore":
        self.initialize()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        """Run one unit of work, mapping SQLite faults to LocalStoreError."""
        with self._lock:
            if self._conn is None:
                raise LocalStoreError("Local database is not initialised")
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as exc:
                logger.error("Local store failed to %s: %s", action, exc)
                raise LocalStoreError(f"Failed to {action}: {exc}") from exc

    # ------------------------------------------------------------------
    # Shipments
    # ------------------------------------------------------------------
    def get_shipment(self, invoice_number: str) -> Lookup[Shipment]:
        with self._transaction("read shipment") as conn:
            row = conn.execute(
                "SELECT * FROM shipments WHERE invoice_number = ?", (invoice_number,)
            ).fetchone()
        return Lookup.hit(_row_to_shipment(row)) if row is not None else Lookup.miss()

    def list_shipments(self, status: str | None = None) -> list[Shipment]:
        query = "SELECT * FROM shipments"
        params: tuple[Any, ...] = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (validate_status(status),)
        query += " ORDER BY created_at DESC"
        with self._transaction("list shipments") as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_shipment(row) for row in rows]

    def upsert_shipment(self, shipment: Shipment) -> None:
        row = _shipment_to_row(shipment)
        columns = ", ".join(row)
        placeholders = ", ".join(f":{name}" for name in row)
        with self._transaction("save shipment") as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO shipments ({columns}) VALUES ({placeholders})",
                row,
            )
        logger.debug("Shipment %s saved locally", shipment.invoice_number)

    def update_shipment_status(self, invoice_number: str, status: str) -> None:
        status = validate_status(status)
        with self._transaction("update shipment status") as conn:
            cursor = conn.execute(
                "UPDATE shipments SET status = ?, updated_at = ? WHERE invoice_number = ?",
                (status, _to_millis(utc_now()), invoice_number),
            )
        if cursor.rowcount == 0:
            raise LocalStoreError(f"Shipment {invoice_number} does not exist locally")
        logger.debug("Shipment %s status set to %s", invoice_number, status)

    def delete_shipment(self, invoice_number: str) -> None:
        """Delete a shipment with its boxes and products in one transaction."""
        with self._transaction("delete shipment") as conn:
            conn.execute(
                "DELETE FROM products WHERE shipment_invoice_number = ?", (invoice_number,)
            )
            conn.execute(
                "DELETE FROM boxes WHERE shipment_invoice_number = ?", (invoice_number,)
            )
            conn.execute("DELETE FROM shipments WHERE invoice_number = ?", (invoice_number,))
        logger.debug("Shipment %s deleted locally", invoice_number)

    # ------------------------------------------------------------------
    # Boxes
    # ------------------------------------------------------------------
    def get_boxes(self, shipment_id: str) -> list[Box]:
        with self._transaction("read boxes") as conn:
            rows = conn.execute(
                "SELECT * FROM boxes WHERE shipment_invoice_number = ? "
                "ORDER BY created_at, id",
                (shipment_id,),
            ).fetchall()
        return [_row_to_box(row) for row in rows]

    def upsert_box(self, box: Box) -> None:
        with self._transaction("save box") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO boxes (id, shipment_invoice_number, box_number, "
                "length, width, height, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    box.id,
                    box.shipment_id,
                    box.box_number,
                    box.length,
                    box.width,
                    box.height,
                    _to_millis(box.created_at),
                    _to_millis(box.updated_at),
                ),
            )
        logger.debug("Box %s saved locally", box.id)

    def delete_box(self, shipment_id: str, box_id: str) -> None:
        with self._transaction("delete box") as conn:
            conn.execute(
                "DELETE FROM boxes WHERE id = ? AND shipment_invoice_number = ?",
                (box_id, shipment_id),
            )
        logger.debug("Box %s deleted locally", box_id)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------
    def get_products(self, shipment_id: str, box_id: str) -> list[Product]:
        with self._transaction("read products") as conn:
            rows = conn.execute(
                "SELECT p.* FROM products p JOIN boxes b "
                "ON b.id = p.box_id AND b.shipment_invoice_number = p.shipment_invoice_number "
                "WHERE p.shipment_invoice_number = ? AND p.box_id = ? "
                "ORDER BY p.created_at, p.id",
                (shipment_id, box_id),
            ).fetchall()
        return [_row_to_product(row) for row in rows]

    def upsert_product(self, shipment_id: str, product: Product) -> None:
        with self._transaction("save product") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO products (id, shipment_invoice_number, box_id, type, "
                "description, weight, rate, quantity, flower_type, has_stems, "
                "approx_quantity, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    product.id,
                    shipment_id,
                    product.box_id,
                    product.type,
                    product.description,
                    product.weight,
                    product.rate,
                    product.quantity,
                    product.flower_type,
                    int(product.has_stems),
                    product.approx_quantity,
                    _to_millis(product.created_at),
                    _to_millis(product.updated_at),
                ),
            )
        logger.debug("Product %s saved locally (shipment %s)", product.id, shipment_id)

    def delete_product(self, shipment_id: str, box_id: str, product_id: str) -> None:
        with self._transaction("delete product") as conn:
            conn.execute(
                "DELETE FROM products "
                "WHERE id = ? AND box_id = ? AND shipment_invoice_number = ?",
                (product_id, box_id, shipment_id),
            )
        logger.debug("Product %s deleted locally (shipment %s)", product_id, shipment_id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------
    def delete_orphans(self) -> tuple[int, int]:
        """Delete boxes without a shipment, then products without a box."""
        with self._transaction("clean up orphans") as conn:
            boxes = conn.execute(
                "DELETE FROM boxes WHERE shipment_invoice_number NOT IN "
                "(SELECT invoice_number FROM shipments)"
            ).rowcount
            products = conn.execute(
                "DELETE FROM products WHERE NOT EXISTS (SELECT 1 FROM boxes b "
                "WHERE b.id = products.box_id "
                "AND b.shipment_invoice_number = products.shipment_invoice_number)"
            ).rowcount
        return boxes, products

    def counts(self) -> dict[str, int]:
        tables = ("shipments", "boxes", "products", *MASTER_COLLECTIONS)
        with self._transaction("count records") as conn:
            return {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in tables
            }

    def next_invoice_number(self) -> str:
        """Return the next ``CS0001``-style invoice number."""
        with self._transaction("allocate invoice number") as conn:
            row = conn.execute(
                "SELECT invoice_number FROM shipments WHERE invoice_number LIKE ? "
                "ORDER BY invoice_number DESC LIMIT 1",
                (f"{INVOICE_PREFIX}%",),
            ).fetchone()
        return _next_number(row[0] if row else None, INVOICE_PREFIX, 4)

    def next_awb_number(self) -> str:
        with self._transaction("allocate AWB number") as conn:
            row = conn.execute(
                "SELECT awb FROM shipments WHERE awb LIKE ? ORDER BY awb DESC LIMIT 1",
                (f"{AWB_PREFIX}%",),
            ).fetchone()
        return _next_number(row[0] if row else None, AWB_PREFIX, 3)

    # ------------------------------------------------------------------
    # Master data and settings
    # ------------------------------------------------------------------
    def list_master(self, collection: str) -> list[MasterRecord]:
        record_type = _master_type(collection)
        with self._transaction(f"list {collection}") as conn:
            rows = conn.execute(f"SELECT * FROM {collection} ORDER BY name").fetchall()
        return [
            record_type(**{key: ("" if row[key] is None else row[key]) for key in row.keys()})
            for row in rows
        ]

    def upsert_master(self, collection: str, record: MasterRecord) -> None:
        _master_type(collection)
        row = dataclasses.asdict(record)
        columns = ", ".join(row)
        placeholders = ", ".join(f":{name}" for name in row)
        with self._transaction(f"save {collection}") as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO {collection} ({columns}) VALUES ({placeholders})",
                row,
            )

    def get_setting(self, key: str) -> str | None:
        with self._transaction("read setting") as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_setting(self, key: str, value: str) -> None:
        with self._transaction("save setting") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, _to_millis(utc_now())),
            )


def _master_type(collection: str) -> type:
    try:
        return MASTER_COLLECTIONS[collection]
    except KeyError as exc:
        raise ValueError(f"Unknown master data collection: {collection}") from exc


__all__ = ["LocalStore"]
