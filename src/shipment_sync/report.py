from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from shipment_sync.model import ReconcileResult, SweepReport, SyncReport


def iso_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _serialise_reconcile(result: ReconcileResult) -> Dict[str, Any]:
    return {
        "shipment_id": result.shipment_id,
        "local_applied": result.local_applied,
        "remote_applied": result.remote_applied,
        "message": result.message,
        "boxes": result.boxes.as_dict(),
        "products": result.products.as_dict(),
        "remote_errors": list(result.remote_errors),
    }


def _serialise_sweep(report: SweepReport) -> Dict[str, Any]:
    return {
        "local": {"boxes": report.local_boxes, "products": report.local_products},
        "remote": {"boxes": report.remote_boxes, "products": report.remote_products},
        "remote_swept": report.remote_swept,
        "remote_errors": list(report.remote_errors),
    }


def _serialise_sync(report: SyncReport) -> Dict[str, Any]:
    return {
        "direction": report.direction,
        "state": report.state.value,
        "copied": report.copied,
        "failed": report.failed,
        "collections": {
            name: {"copied": tally.copied, "failed": tally.failed}
            for name, tally in report.collections.items()
        },
        "reason": report.reason,
        "started_at": report.started_at.isoformat(),
        "finished_at": report.finished_at.isoformat() if report.finished_at else None,
    }


def build_reconcile_payload(result: ReconcileResult) -> Dict[str, Any]:
    """Build JSON payload for one reconciliation pass."""

    return {
        "status": "success" if result.remote_applied else "degraded",
        "timestamp": iso_timestamp(),
        "operation": "reconcile",
        "result": _serialise_reconcile(result),
        "error": None,
    }


def build_sweep_payload(report: SweepReport) -> Dict[str, Any]:
    return {
        "status": "success",
        "timestamp": iso_timestamp(),
        "operation": "sweep",
        "removed": report.total,
        "result": _serialise_sweep(report),
        "error": None,
    }


def build_sync_payload(report: SyncReport) -> Dict[str, Any]:
    failed = report.reason is not None
    return {
        "status": "error" if failed else "success",
        "timestamp": iso_timestamp(),
        "operation": report.direction,
        "result": _serialise_sync(report),
        "error": report.reason,
    }


def build_error_payload(operation: str, error: Exception | str) -> Dict[str, Any]:
    return {
        "status": "error",
        "timestamp": iso_timestamp(),
        "operation": operation,
        "result": None,
        "error": str(error),
    }


def write_report(payload: Dict[str, Any], output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)

    return output_path


__all__ = [
    "build_error_payload",
    "build_reconcile_payload",
    "build_sweep_payload",
    "build_sync_payload",
    "iso_timestamp",
    "write_report",
]
