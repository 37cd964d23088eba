"""Shipment reconciliation toolkit.

Keeps a shipment's box/product tree consistent between the local SQLite
database and its Cloud Firestore mirror. ``ShipmentService`` is the
programmatic entry point; the ``run_*`` helpers back the CLI.
"""

from .model import BoxInput, ProductInput, ReadMode, Shipment  # Submission types
from .runner import run_pull, run_push, run_reconcile, run_sweep  # Report-writing API
from .service import ShipmentService  # Public API for reconciliation and sync

__all__ = [
    "BoxInput",
    "ProductInput",
    "ReadMode",
    "Shipment",
    "ShipmentService",
    "run_pull",
    "run_push",
    "run_reconcile",
    "run_sweep",
]  # Re-exported symbols
