from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator

from google.auth import exceptions as auth_exceptions

from shipment_sync.config import Settings
from shipment_sync.connectivity import (
    ConnectivityOracle,
    SocketConnectivityOracle,
    StaticConnectivityOracle,
)
from shipment_sync.errors import LocalStoreError
from shipment_sync.local_store import LocalStore
from shipment_sync.model import SyncProgress, normalize_invoice_number
from shipment_sync.remote_store import FirestoreRemoteStore
from shipment_sync.report import (
    build_error_payload,
    build_reconcile_payload,
    build_sweep_payload,
    build_sync_payload,
    write_report,
)
from shipment_sync.service import ShipmentService
from shipment_sync.sweeper import SweepScope
from shipment_sync.workbook_reader import extract_submission

logger = logging.getLogger(__name__)

DEFAULT_REPORT_NAME = "shipment_report.json"


def _build_oracle(settings: Settings) -> ConnectivityOracle:
    if settings.offline:
        return StaticConnectivityOracle(False)
    return SocketConnectivityOracle(
        settings.probe_host, settings.probe_port, timeout=settings.probe_timeout
    )


def _build_remote(settings: Settings) -> FirestoreRemoteStore | None:
    if settings.offline:
        return None
    try:
        return FirestoreRemoteStore.from_credentials(
            settings.credentials_path, settings.user_id, timeout=settings.remote_timeout
        )
    except (ValueError, OSError, auth_exceptions.GoogleAuthError) as exc:
        # Without a cloud client every flow still works against the local store
        logger.warning("Cloud store not configured, continuing offline: %s", exc)
        return None


@contextmanager
def open_service(settings: Settings) -> Iterator[ShipmentService]:
    """Open the local database and yield a service wired to both stores."""
    with LocalStore(settings.database_path) as local:
        yield ShipmentService(local, _build_remote(settings), _build_oracle(settings))


def _log_progress(progress: SyncProgress) -> None:
    logger.info("[%3d%%] %s", progress.percent, progress.message)


def _run(
    operation: str,
    settings: Settings | None,
    output_path: str | None,
    work: Callable[[ShipmentService], Dict[str, Any]],
) -> Path:
    settings = settings or Settings.from_env()
    report_path = Path(output_path) if output_path else Path(DEFAULT_REPORT_NAME)

    try:
        with open_service(settings) as service:
            payload = work(service)
    except LocalStoreError as exc:
        logger.error("%s failed: %s", operation, exc)
        payload = build_error_payload(operation, exc)
        if exc.result is not None:
            payload["result"] = build_reconcile_payload(exc.result)["result"]
    except Exception as exc:
        # Error report
        logger.error("%s failed: %s", operation, exc)
        payload = build_error_payload(operation, exc)

    return write_report(payload, report_path)


def run_reconcile(
    workbook_path: str,
    invoice_number: str | None = None,
    *,
    settings: Settings | None = None,
    output_path: str | None = None,
) -> Path:
    """Apply a workbook submission to both stores and write a JSON report."""

    def work(service: ShipmentService) -> Dict[str, Any]:
        # 1. Read the submission from Excel
        shipment, boxes = extract_submission(Path(workbook_path), invoice_number)
        # 2. Reconcile it against the stores
        result = service.reconcile_shipment(shipment, boxes)
        # 3. Build the report payload
        return build_reconcile_payload(result)

    return _run("reconcile", settings, output_path, work)


def run_pull(*, settings: Settings | None = None, output_path: str | None = None) -> Path:
    """Copy the cloud data into the local database and write a JSON report."""

    def work(service: ShipmentService) -> Dict[str, Any]:
        return build_sync_payload(service.pull_from_remote(_log_progress))

    return _run("pull", settings, output_path, work)


def run_push(*, settings: Settings | None = None, output_path: str | None = None) -> Path:
    """Upload every local record to the cloud and write a JSON report."""

    def work(service: ShipmentService) -> Dict[str, Any]:
        return build_sync_payload(service.push_to_remote(_log_progress))

    return _run("push", settings, output_path, work)


def run_sweep(
    invoice_number: str | None = None,
    *,
    settings: Settings | None = None,
    output_path: str | None = None,
) -> Path:
    """Remove orphaned boxes and products and write a JSON report."""

    def work(service: ShipmentService) -> Dict[str, Any]:
        shipment_id = normalize_invoice_number(invoice_number) if invoice_number else None
        return build_sweep_payload(service.sweep_orphans(SweepScope(shipment_id=shipment_id)))

    return _run("sweep", settings, output_path, work)


__all__ = [
    "DEFAULT_REPORT_NAME",
    "open_service",
    "run_pull",
    "run_push",
    "run_reconcile",
    "run_sweep",
]
