"""Domain models for shipment reconciliation.

These dataclasses represent the entities shared throughout the engine:
shipments and the boxes and products they own, the inputs an editor
submits, master data, and the result objects handed back to callers.
"""

from __future__ import annotations  # Postponed evaluation of annotations (PEP 563)

from dataclasses import dataclass, field  # Dataclass utilities
from datetime import datetime, timezone
from enum import Enum
from typing import Generic, Literal, TypeVar

ShipmentStatus = Literal["pending", "in_transit", "delivered", "cancelled"]
SHIPMENT_STATUSES: tuple[str, ...] = ("pending", "in_transit", "delivered", "cancelled")

DEFAULT_FLOWER_TYPE = "LOOSE FLOWERS"

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_invoice_number(value: str) -> str:
    """Return the canonical (trimmed, uppercased) shipment key."""
    normalized = (value or "").strip().upper()
    if not normalized:
        raise ValueError("invoice number must not be empty")
    return normalized


def validate_status(value: str) -> str:
    status = (value or "").strip().lower()
    if status not in SHIPMENT_STATUSES:
        raise ValueError(
            f"unknown shipment status {value!r}; expected one of {', '.join(SHIPMENT_STATUSES)}"
        )
    return status


def describe_product(flower_type: str, has_stems: bool, approx_quantity: int) -> str:
    """Build the default product description used on packing lists."""
    stems = "WITH STEMS" if has_stems else "NO STEMS"
    return f"{flower_type or DEFAULT_FLOWER_TYPE}, {stems} - APPROX {approx_quantity} NOS"


class ReadMode(str, Enum):
    """Which backend a read may consult."""

    LOCAL_ONLY = "local_only"
    PREFER_REMOTE = "prefer_remote"


@dataclass(slots=True)
class Shipment:
    """A shipment keyed by its normalised invoice number."""

    invoice_number: str
    shipper: str = ""
    consignee: str = ""
    awb: str = ""
    shipper_address: str = ""
    consignee_address: str = ""
    client_ref: str = ""
    master_awb: str = ""
    house_awb: str = ""
    flight_no: str = ""
    flight_date: datetime | None = None
    discharge_airport: str = ""
    origin: str = ""
    destination: str = ""
    eta: datetime | None = None
    invoice_date: datetime | None = None
    date_of_issue: datetime | None = None
    place_of_receipt: str = ""
    sgst_no: str = ""
    iec_code: str = ""
    freight_terms: str = ""
    gross_weight: float = 0.0
    invoice_title: str = ""
    status: str = "pending"
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        self.invoice_number = normalize_invoice_number(self.invoice_number)
        self.awb = (self.awb or "").strip().upper()
        self.status = validate_status(self.status)

    def __str__(self) -> str:
        return f"shipment(invoice={self.invoice_number}, status={self.status})"


@dataclass(slots=True)
class Box:
    """A box owned by exactly one shipment."""

    id: str
    shipment_id: str
    box_number: str
    length: float = 0.0
    width: float = 0.0
    height: float = 0.0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime | None = None

    @property
    def volume(self) -> float:
        return self.length * self.width * self.height

    def __str__(self) -> str:
        return f"box(id={self.id}, label={self.box_number}, shipment={self.shipment_id})"


@dataclass(slots=True)
class Product:
    """A product line packed in exactly one box."""

    id: str
    box_id: str
    type: str
    description: str = ""
    weight: float = 0.0
    rate: float = 0.0
    quantity: int = 1
    flower_type: str = DEFAULT_FLOWER_TYPE
    has_stems: bool = False
    approx_quantity: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.description:
            self.description = describe_product(
                self.flower_type, self.has_stems, self.approx_quantity
            )

    @property
    def total_value(self) -> float:
        return self.weight * self.rate

    def __str__(self) -> str:
        return f"product(id={self.id}, type={self.type}, box={self.box_id})"


@dataclass(slots=True)
class ProductInput:
    """Product as submitted by an editor; ``id`` is None for new lines."""

    type: str
    id: str | None = None
    description: str = ""
    weight: float = 0.0
    rate: float = 0.0
    quantity: int = 1
    flower_type: str = DEFAULT_FLOWER_TYPE
    has_stems: bool = False
    approx_quantity: int = 0

    def __post_init__(self) -> None:
        if not self.description:
            self.description = describe_product(
                self.flower_type, self.has_stems, self.approx_quantity
            )


@dataclass(slots=True)
class BoxInput:
    """Box as submitted by an editor.

    ``products=None`` leaves the persisted products of an existing box
    untouched; an empty list removes them all.
    """

    box_number: str
    id: str | None = None
    length: float = 0.0
    width: float = 0.0
    height: float = 0.0
    products: list[ProductInput] | None = field(default_factory=list)


@dataclass(slots=True)
class MasterShipper:
    id: str
    name: str
    address: str = ""
    phone: str = ""
    address_line1: str = ""
    address_line2: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    landmark: str = ""


@dataclass(slots=True)
class MasterConsignee:
    id: str
    name: str
    address: str = ""
    phone: str = ""
    address_line1: str = ""
    address_line2: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    landmark: str = ""


@dataclass(slots=True)
class MasterProductType:
    id: str
    name: str
    approx_quantity: int = 1


MasterRecord = MasterShipper | MasterConsignee | MasterProductType

# Collection name -> record type, in sync order
MASTER_COLLECTIONS: dict[str, type] = {
    "master_shippers": MasterShipper,
    "master_consignees": MasterConsignee,
    "master_product_types": MasterProductType,
}


@dataclass(slots=True, frozen=True)
class Lookup(Generic[T]):
    """Outcome of a single-record read: found with a value, or not found."""

    value: T | None = None
    found: bool = False

    @classmethod
    def hit(cls, value: T) -> "Lookup[T]":
        return cls(value=value, found=True)

    @classmethod
    def miss(cls) -> "Lookup[T]":
        return cls()

    def unwrap(self) -> T:
        if not self.found:
            raise LookupError("record not found")
        return self.value  # type: ignore[return-value]


@dataclass(slots=True)
class ChangeCounts:
    """Per-granularity tally of a reconciliation pass."""

    added: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0  # Child deletes that did not complete

    @property
    def total(self) -> int:
        return self.added + self.updated + self.deleted

    def as_dict(self) -> dict[str, int]:
        return {
            "added": self.added,
            "updated": self.updated,
            "deleted": self.deleted,
            "failed": self.failed,
        }


@dataclass(slots=True)
class ReconcileResult:
    """What a reconciliation pass did, and which backends it reached."""

    shipment_id: str
    local_applied: bool = False
    remote_applied: bool = False
    boxes: ChangeCounts = field(default_factory=ChangeCounts)
    products: ChangeCounts = field(default_factory=ChangeCounts)
    remote_errors: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.local_applied and not self.remote_applied

    @property
    def message(self) -> str:
        if self.local_applied and self.remote_applied:
            return f"Shipment {self.shipment_id} saved to database and cloud"
        if self.local_applied:
            return (
                f"Shipment {self.shipment_id} saved to database only - "
                "cloud backup unavailable"
            )
        return f"Shipment {self.shipment_id} could not be saved"


@dataclass(slots=True)
class SweepReport:
    local_boxes: int = 0
    local_products: int = 0
    remote_boxes: int = 0
    remote_products: int = 0
    remote_swept: bool = False
    remote_errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.local_boxes + self.local_products + self.remote_boxes + self.remote_products


class SyncState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


SyncDirection = Literal["pull", "push"]


@dataclass(slots=True)
class SyncProgress:
    state: SyncState
    percent: int
    message: str = ""


@dataclass(slots=True)
class CollectionTally:
    copied: int = 0
    failed: int = 0


@dataclass(slots=True)
class SyncReport:
    """Outcome of one bulk replication run."""

    direction: SyncDirection
    state: SyncState = SyncState.IDLE
    collections: dict[str, CollectionTally] = field(default_factory=dict)
    reason: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None

    def tally(self, collection: str) -> CollectionTally:
        return self.collections.setdefault(collection, CollectionTally())

    @property
    def copied(self) -> int:
        return sum(t.copied for t in self.collections.values())

    @property
    def failed(self) -> int:
        return sum(t.failed for t in self.collections.values())


__all__ = [
    "BoxInput",
    "Box",
    "ChangeCounts",
    "CollectionTally",
    "Lookup",
    "MASTER_COLLECTIONS",
    "MasterConsignee",
    "MasterProductType",
    "MasterRecord",
    "MasterShipper",
    "Product",
    "ProductInput",
    "ReadMode",
    "ReconcileResult",
    "SHIPMENT_STATUSES",
    "Shipment",
    "ShipmentStatus",
    "SweepReport",
    "SyncDirection",
    "SyncProgress",
    "SyncReport",
    "SyncState",
    "describe_product",
    "normalize_invoice_number",
    "utc_now",
    "validate_status",
]
