from __future__ import annotations

import json
import subprocess
from typing import Any

from .db import log_event
from .routes import Route, RouteCommandError, TableReadFailed
from .settings import settings


class RoutingTableGateway:
    """Access to one numbered policy routing table."""

    def list_installed_routes(self, table: int) -> list[Route]:
        raise NotImplementedError

    def add_route(self, destination: str, nexthop: str, table: int) -> None:
        raise NotImplementedError

    def remove_route(self, destination: str, nexthop: str, table: int) -> None:
        raise NotImplementedError

    def ensure_policy_rule(self, table: int) -> bool:
        """Make sure a rule looks up `table`. Returns True if one was created."""
        raise NotImplementedError


def parse_route_json(entries: list[dict[str, Any]]) -> list[Route]:
    """Routes from `ip -json route show`. Entries without a gateway are not ours."""
    out: list[Route] = []
    for e in entries:
        dst = e.get("dst")
        gateway = e.get("gateway")
        if not dst or not gateway or dst == "default":
            continue
        try:
            out.append(Route.parse(dst, gateway))
        except ValueError:
            continue
    return out


def rule_tables(entries: list[dict[str, Any]]) -> list[str]:
    return [str(e["table"]) for e in entries if "table" in e]


class LinuxRoutingTable(RoutingTableGateway):
    """RoutingTableGateway backed by iproute2."""

    def __init__(self, ip_bin: str | None = None, dry_run: bool | None = None) -> None:
        self.ip_bin = ip_bin or settings.ip_bin
        self.dry_run = settings.dry_run if dry_run is None else dry_run

    def list_installed_routes(self, table: int) -> list[Route]:
        # The kernel only creates a numbered table with its first route.
        entries = self._read_json(["-json", "route", "show", "table", str(table)], missing_table_ok=True)
        return parse_route_json(entries)

    def add_route(self, destination: str, nexthop: str, table: int) -> None:
        self._mutate(["route", "add", destination, "via", nexthop, "table", str(table)])

    def remove_route(self, destination: str, nexthop: str, table: int) -> None:
        self._mutate(["route", "del", destination, "via", nexthop, "table", str(table)])

    def count_policy_rules(self, table: int) -> int:
        entries = self._read_json(["-json", "rule", "list"])
        return rule_tables(entries).count(str(table))

    def ensure_policy_rule(self, table: int) -> bool:
        try:
            present = self.count_policy_rules(table)
        except TableReadFailed as e:
            raise RouteCommandError(str(e)) from e
        if present:
            return False
        self._mutate(["rule", "add", "from", "all", "table", str(table)])
        return True

    def _read_json(self, args: list[str], missing_table_ok: bool = False) -> list[dict[str, Any]]:
        cmd = [self.ip_bin, *args]
        try:
            cp = subprocess.run(cmd, check=True, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise TableReadFailed(f"{self.ip_bin} not found") from e
        except subprocess.CalledProcessError as e:
            if missing_table_ok and "FIB table does not exist" in (e.stderr or ""):
                return []
            raise TableReadFailed(f"Command failed: {' '.join(cmd)}: {(e.stderr or '').strip()}") from e
        text = cp.stdout.strip()
        if not text:
            return []
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise TableReadFailed(f"Invalid JSON from {' '.join(cmd)}: {e}") from e
        return data if isinstance(data, list) else []

    def _mutate(self, args: list[str]) -> None:
        cmd = [self.ip_bin, *args]
        if self.dry_run:
            log_event("INFO", f"dry-run: {' '.join(cmd)}")
            return
        try:
            subprocess.run(cmd, check=True, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise RouteCommandError(f"{self.ip_bin} not found") from e
        except subprocess.CalledProcessError as e:
            raise RouteCommandError((e.stderr or "").strip() or f"exit status {e.returncode}") from e
