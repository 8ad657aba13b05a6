from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("NMR_DB_PATH", "nmroutes.db")
    poll_interval_s: int = _env_int("NMR_POLL_INTERVAL_S", 30)
    routing_table: int = _env_int("NMR_ROUTING_TABLE", 5050)
    enable_loop: bool = _env_bool("NMR_ENABLE_LOOP", True)

    # Peer discovery (podman's docker-compatible API)
    podman_url: str | None = os.getenv("NMR_PODMAN_URL")
    peer_pattern: str = os.getenv("NMR_PEER_PATTERN", r"^(netmaker-server|netclient-)")
    mesh_iface_prefix: str = os.getenv("NMR_MESH_IFACE_PREFIX", "nm-")

    # Host routing
    ip_bin: str = os.getenv("NMR_IP_BIN", "ip")
    dry_run: bool = _env_bool("NMR_DRY_RUN", False)
    # skip|first
    conflict_policy: str = os.getenv("NMR_CONFLICT_POLICY", "skip")

    # API auth is only enforced when a password is configured.
    api_user: str = os.getenv("NMR_API_USER", "admin")
    api_password: str | None = os.getenv("NMR_API_PASSWORD")


settings = Settings()
