"""Error taxonomy for the reconciliation engine.

Local failures are fatal and propagate to the caller. Remote failures are
recorded in result objects by the engine and only raised by the stores
themselves.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from shipment_sync.model import ReconcileResult


class ShipmentSyncError(Exception):
    """Base class for every error raised by this package."""


class LocalStoreError(ShipmentSyncError):
    """The local store failed; local is the only always-on backend."""

    def __init__(self, message: str, result: "ReconcileResult | None" = None) -> None:
        super().__init__(message)
        self.result = result  # Partial outcome when raised mid-pass


class RemoteStoreError(ShipmentSyncError):
    """A remote operation failed."""


class RemoteUnreachable(RemoteStoreError):
    """The remote store could not be contacted."""


class RemoteUnauthorized(RemoteStoreError):
    """No authenticated user, or the user may not access the data."""


class RemoteOperationTimeout(RemoteUnreachable):
    """A remote call did not complete within its deadline."""


class SyncUnavailable(ShipmentSyncError):
    """A bulk sync was requested while the remote store is not usable."""


class SyncInProgress(ShipmentSyncError):
    """A bulk sync was requested while another one is still running."""


__all__ = [
    "LocalStoreError",
    "RemoteOperationTimeout",
    "RemoteStoreError",
    "RemoteUnauthorized",
    "RemoteUnreachable",
    "ShipmentSyncError",
    "SyncInProgress",
    "SyncUnavailable",
]
