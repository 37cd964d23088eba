"""Reachability checks consulted before every remote operation."""

from __future__ import annotations

import logging
import socket
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_PROBE_HOST = "firestore.googleapis.com"
DEFAULT_PROBE_PORT = 443


class ConnectivityOracle(Protocol):
    def is_reachable(self) -> bool:
        """Return True when the remote store can currently be contacted."""
        ...


class SocketConnectivityOracle:
    """Probe the remote endpoint with a plain TCP connect."""

    def __init__(
        self,
        host: str = DEFAULT_PROBE_HOST,
        port: int = DEFAULT_PROBE_PORT,
        timeout: float = 2.0,
    ) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout

    def is_reachable(self) -> bool:
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                return True
        except OSError as exc:
            logger.debug("Probe of %s:%s failed: %s", self.host, self.port, exc)
            return False


class StaticConnectivityOracle:
    """Fixed answer; used for forced offline mode."""

    def __init__(self, reachable: bool) -> None:
        self.reachable = reachable

    def is_reachable(self) -> bool:
        return self.reachable


__all__ = [
    "ConnectivityOracle",
    "SocketConnectivityOracle",
    "StaticConnectivityOracle",
]
