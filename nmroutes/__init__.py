"""Netmaker route sync.

Keeps a host policy routing table in line with the subnets advertised by
Netmaker server and client containers running under podman:
 - peer discovery through podman's docker-compatible API
 - minimal add/remove diff applied with iproute2
 - a policy rule directing lookups through the table
 - periodic passes with an event log and an HTTP status API
"""
from __future__ import annotations

from .iproute import LinuxRoutingTable, RoutingTableGateway
from .podman_ops import ContainerPeerEnumerator, Peer, PeerEnumerator
from .reconciler import Reconciler
from .routes import (
    PassInProgress,
    PeerQueryFailed,
    ReconcileError,
    Route,
    RouteCommandError,
    TableReadFailed,
)
from .runtime import ReconcileReport, RouteFailure, RuntimeState


def build_reconciler(dry_run: bool | None = None) -> Reconciler:
    """Reconciler wired to the local podman socket and the host routing table."""
    return Reconciler(peers=ContainerPeerEnumerator(), table=LinuxRoutingTable(dry_run=dry_run))
