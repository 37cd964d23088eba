"""Runtime settings, read from ``SHIPMENT_SYNC_*`` environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Mapping

from shipment_sync.connectivity import DEFAULT_PROBE_HOST, DEFAULT_PROBE_PORT
from shipment_sync.remote_store import DEFAULT_TIMEOUT

ENV_PREFIX = "SHIPMENT_SYNC_"
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(slots=True, frozen=True)
class Settings:
    database_path: str = "shipments.db"
    credentials_path: str | None = None  # None -> application default credentials
    user_id: str | None = None
    remote_timeout: float = DEFAULT_TIMEOUT
    probe_host: str = DEFAULT_PROBE_HOST
    probe_port: int = DEFAULT_PROBE_PORT
    probe_timeout: float = 2.0
    offline: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ

        def _get(name: str) -> str | None:
            value = env.get(ENV_PREFIX + name)
            return value.strip() if value is not None and value.strip() else None

        def _number(name: str, cast: type, default: Any) -> Any:
            raw = _get(name)
            if raw is None:
                return default
            try:
                return cast(raw)
            except ValueError as exc:
                raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from exc

        defaults = cls()
        return cls(
            database_path=_get("DB") or defaults.database_path,
            credentials_path=_get("CREDENTIALS"),
            user_id=_get("USER"),
            remote_timeout=_number("REMOTE_TIMEOUT", float, defaults.remote_timeout),
            probe_host=_get("PROBE_HOST") or defaults.probe_host,
            probe_port=_number("PROBE_PORT", int, defaults.probe_port),
            probe_timeout=_number("PROBE_TIMEOUT", float, defaults.probe_timeout),
            offline=(_get("OFFLINE") or "").lower() in _TRUTHY,
            log_level=(_get("LOG_LEVEL") or defaults.log_level).upper(),
        )

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


__all__ = ["ENV_PREFIX", "Settings"]
