"""Excel extraction of an editor's shipment submission.

This module reads a workbook with ``openpyxl`` and converts it into a
:class:`Shipment` plus the list of :class:`BoxInput` objects the
reconciliation engine expects. Expected worksheets:

``shipment``
    Header row followed by one data row (``Invoice Number``, ``Shipper``,
    ``Consignee``, ``AWB``, ``Flight No``, ``Origin``, ``Destination``,
    ``Status`` ...).
``boxes``
    ``ID`` (blank for new boxes), ``Box``, ``Length``, ``Width``, ``Height``.
``products``
    ``ID``, ``Box`` (label of the owning box), ``Type``, ``Description``,
    ``Weight``, ``Rate``, ``Quantity``, ``Flower Type``, ``Stems``,
    ``Approx Quantity``.

A workbook without a ``boxes`` sheet submits no box tree at all, which
leaves the persisted boxes untouched.
"""

from __future__ import annotations

from pathlib import Path  # Filesystem path management
from typing import Any, Iterator

from openpyxl import load_workbook  # Excel file loader

from shipment_sync.model import DEFAULT_FLOWER_TYPE, BoxInput, ProductInput, Shipment

SHIPMENT_COLUMNS = {
    "Invoice Number": "invoice_number",
    "Invoice Title": "invoice_title",
    "Shipper": "shipper",
    "Shipper Address": "shipper_address",
    "Consignee": "consignee",
    "Consignee Address": "consignee_address",
    "Client Ref": "client_ref",
    "AWB": "awb",
    "Master AWB": "master_awb",
    "House AWB": "house_awb",
    "Flight No": "flight_no",
    "Discharge Airport": "discharge_airport",
    "Origin": "origin",
    "Destination": "destination",
    "Place Of Receipt": "place_of_receipt",
    "Freight Terms": "freight_terms",
    "Status": "status",
}
SHIPMENT_DATE_COLUMNS = {
    "Flight Date": "flight_date",
    "ETA": "eta",
    "Invoice Date": "invoice_date",
}


def _rows(sheet: Any) -> Iterator[dict[str, Any]]:
    """Yield each data row as a header -> value mapping."""
    rows = sheet.iter_rows(values_only=True)
    headers_row = next(rows, None)
    if headers_row is None:  # Empty sheet edge case
        return
    headers = [str(h).strip() if h is not None else "" for h in headers_row]
    for row in rows:
        if row is None or all(value in (None, "") for value in row):
            continue  # Skip blank rows
        yield {h: row[i] if i < len(row) else None for i, h in enumerate(headers) if h}


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))  # Normalise numerics (e.g., 30.0 -> "30")
    return str(value).strip()


def _float(value: Any) -> float:
    if value in (None, ""):
        return 0.0
    return float(value)


def _int(value: Any, default: int = 0) -> int:
    if value in (None, ""):
        return default
    return int(float(value))


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return _text(value).lower() in {"yes", "y", "true", "1", "with stems"}


def _read_shipment(sheet: Any, invoice_number: str | None) -> Shipment:
    rows = list(_rows(sheet))
    if invoice_number:
        wanted = invoice_number.strip().upper()
        rows = [r for r in rows if _text(r.get("Invoice Number")).upper() == wanted]
        if not rows:
            raise ValueError(f"Invoice {invoice_number!r} not found in worksheet 'shipment'")
    if not rows:
        raise ValueError("Worksheet 'shipment' has no data row")
    row = rows[0]

    values: dict[str, Any] = {
        field: _text(row.get(column)) for column, field in SHIPMENT_COLUMNS.items()
    }
    if not values["status"]:
        values["status"] = "pending"
    for column, field in SHIPMENT_DATE_COLUMNS.items():
        values[field] = row.get(column) or None
    values["gross_weight"] = _float(row.get("Gross Weight"))
    return Shipment(**values)


def _read_boxes(sheet: Any) -> list[BoxInput]:
    boxes: list[BoxInput] = []
    for row in _rows(sheet):
        label = _text(row.get("Box"))
        if not label:
            continue  # Skip rows without a label
        boxes.append(
            BoxInput(
                box_number=label,
                id=_text(row.get("ID")) or None,
                length=_float(row.get("Length")),
                width=_float(row.get("Width")),
                height=_float(row.get("Height")),
                products=[],
            )
        )
    return boxes


def _attach_products(sheet: Any, boxes: list[BoxInput]) -> None:
    by_label = {box.box_number: box for box in boxes}
    for row in _rows(sheet):
        label = _text(row.get("Box"))
        box = by_label.get(label)
        if box is None:
            raise ValueError(f"Product row references unknown box {label!r}")
        box.products.append(
            ProductInput(
                type=_text(row.get("Type")),
                id=_text(row.get("ID")) or None,
                description=_text(row.get("Description")),
                weight=_float(row.get("Weight")),
                rate=_float(row.get("Rate")),
                quantity=_int(row.get("Quantity"), default=1),
                flower_type=_text(row.get("Flower Type")) or DEFAULT_FLOWER_TYPE,
                has_stems=_flag(row.get("Stems")),
                approx_quantity=_int(row.get("Approx Quantity")),
            )
        )


def extract_submission(
    workbook_path: Path, invoice_number: str | None = None
) -> tuple[Shipment, list[BoxInput] | None]:
    """Return the shipment and submitted box tree described by a workbook.

    Raises :class:`FileNotFoundError` if the workbook cannot be located and
    :class:`ValueError` if the ``shipment`` worksheet is missing.
    """

    workbook_path = Path(workbook_path)  # Ensure we have a Path instance
    if not workbook_path.exists():  # Validate the file exists
        raise FileNotFoundError(f"Workbook not found: {workbook_path}")

    # Open in read-only mode for performance and safety; use cell values only
    workbook = load_workbook(filename=workbook_path, read_only=True, data_only=True)
    try:
        if "shipment" not in workbook.sheetnames:
            raise ValueError("Worksheet 'shipment' not found in workbook")
        shipment = _read_shipment(workbook["shipment"], invoice_number)

        if "boxes" not in workbook.sheetnames:
            return shipment, None
        boxes = _read_boxes(workbook["boxes"])
        if "products" in workbook.sheetnames:
            _attach_products(workbook["products"], boxes)
    finally:
        workbook.close()  # Always close the workbook handle

    return shipment, boxes


__all__ = ["extract_submission"]
