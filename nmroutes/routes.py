from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Iterable, Mapping


class ReconcileError(Exception):
    """A reconciliation pass could not run to completion."""


class PeerQueryFailed(ReconcileError):
    pass


class TableReadFailed(ReconcileError):
    pass


class PassInProgress(ReconcileError):
    pass


class RouteCommandError(Exception):
    """A single add/remove/rule change was rejected by the host."""


def normalize_destination(raw: str) -> str:
    """Return the canonical CIDR for a destination (`10.0.1.7/24` -> `10.0.1.0/24`).

    A bare address is treated as a host route.
    """
    return str(ipaddress.ip_network(raw.strip(), strict=False))


def normalize_nexthop(raw: str) -> str:
    return str(ipaddress.ip_address(raw.strip()))


@dataclass(frozen=True, order=True)
class Route:
    destination: str
    nexthop: str

    @classmethod
    def parse(cls, destination: str, nexthop: str) -> "Route":
        """Build a route from text, raising ValueError on malformed input."""
        return cls(normalize_destination(destination), normalize_nexthop(nexthop))

    def __str__(self) -> str:
        return f"{self.destination} via {self.nexthop}"


@dataclass(frozen=True)
class Conflict:
    destination: str
    nexthops: tuple[str, ...]

    def __str__(self) -> str:
        return f"conflicting nexthops for {self.destination}: {', '.join(self.nexthops)}"


@dataclass
class RouteMap:
    """Destination -> nexthop mapping plus any conflicting advertisements."""

    routes: dict[str, str] = field(default_factory=dict)
    conflicts: list[Conflict] = field(default_factory=list)

    @property
    def skipped(self) -> set[str]:
        return {c.destination for c in self.conflicts if c.destination not in self.routes}


CONFLICT_POLICIES = {"skip", "first"}


def build_route_map(routes: Iterable[Route], conflict_policy: str = "skip") -> RouteMap:
    """Collapse a route listing into one nexthop per destination.

    Identical duplicates collapse. When a destination is advertised with more
    than one nexthop, `skip` drops the destination from the map and `first`
    keeps the nexthop seen first. Either way the conflict is returned.
    """
    if conflict_policy not in CONFLICT_POLICIES:
        raise ValueError(f"Unknown conflict policy '{conflict_policy}'. Use one of: {', '.join(sorted(CONFLICT_POLICIES))}.")

    seen: dict[str, list[str]] = {}
    for r in routes:
        nexthops = seen.setdefault(r.destination, [])
        if r.nexthop not in nexthops:
            nexthops.append(r.nexthop)

    out = RouteMap()
    for destination, nexthops in seen.items():
        if len(nexthops) > 1:
            out.conflicts.append(Conflict(destination, tuple(nexthops)))
            if conflict_policy == "skip":
                continue
        out.routes[destination] = nexthops[0]
    return out


@dataclass(frozen=True)
class RouteDiff:
    to_add: tuple[Route, ...]
    to_remove: tuple[Route, ...]

    @property
    def empty(self) -> bool:
        return not self.to_add and not self.to_remove

    @property
    def changed_destinations(self) -> set[str]:
        """Destinations whose nexthop moves (present in both halves)."""
        return {r.destination for r in self.to_add} & {r.destination for r in self.to_remove}


def installed_pairs(actual: Mapping[str, str] | Iterable[Route]) -> set[Route]:
    """Every installed (destination, nexthop) pair; a table may list a destination more than once."""
    if isinstance(actual, Mapping):
        return {Route(d, n) for d, n in actual.items()}
    return set(actual)


def compute_diff(
    desired: dict[str, str],
    actual: Mapping[str, str] | Iterable[Route],
    keep: Iterable[str] = (),
) -> RouteDiff:
    """Routes to install and to withdraw so that `actual` becomes `desired`.

    `actual` is either a destination -> nexthop mapping or the raw table
    listing. Removals are computed over pairs, so any extra nexthop for a
    desired destination is withdrawn. Destinations in `keep` are left alone
    in `actual` even when not desired.
    """
    frozen = set(keep)
    pairs = installed_pairs(actual)
    to_add = sorted(Route(d, n) for d, n in desired.items() if Route(d, n) not in pairs)
    to_remove = sorted(r for r in pairs if desired.get(r.destination) != r.nexthop and r.destination not in frozen)
    return RouteDiff(tuple(to_add), tuple(to_remove))
