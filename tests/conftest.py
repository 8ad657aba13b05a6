import os as _os
import sys

import pytest

# Ensure project root is importable (so `import main` / `import cli` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from nmroutes import db  # noqa: E402
from nmroutes.iproute import RoutingTableGateway  # noqa: E402
from nmroutes.podman_ops import Peer, PeerEnumerator  # noqa: E402
from nmroutes.routes import PeerQueryFailed, Route, RouteCommandError, TableReadFailed  # noqa: E402
from nmroutes.settings import Settings  # noqa: E402


@pytest.fixture(autouse=True)
def event_db(tmp_path, monkeypatch):
    """Point the event log at an isolated sqlite file for every test."""
    monkeypatch.setattr(db, "settings", Settings(db_path=str(tmp_path / "events.db")))
    db.init_db()
    return db


class MemoryRoutingTable(RoutingTableGateway):
    """In-memory routing tables keyed by table id, with optional injected failures."""

    def __init__(self, routes=None, table=5050):
        self.tables = {table: dict(routes or {})}
        self.rules = []
        self.calls = []
        self.fail_add = set()
        self.fail_remove = set()
        self.fail_read = False

    def list_installed_routes(self, table):
        if self.fail_read:
            raise TableReadFailed("table unreadable")
        return [Route(d, n) for d, n in self.tables.get(table, {}).items()]

    def add_route(self, destination, nexthop, table):
        self.calls.append(("add", destination, nexthop))
        if destination in self.fail_add:
            raise RouteCommandError("RTNETLINK answers: Network is unreachable")
        routes = self.tables.setdefault(table, {})
        if destination in routes:
            raise RouteCommandError("RTNETLINK answers: File exists")
        routes[destination] = nexthop

    def remove_route(self, destination, nexthop, table):
        self.calls.append(("remove", destination, nexthop))
        if destination in self.fail_remove:
            raise RouteCommandError("RTNETLINK answers: No such process")
        routes = self.tables.setdefault(table, {})
        if routes.get(destination) != nexthop:
            raise RouteCommandError("RTNETLINK answers: No such process")
        del routes[destination]

    def ensure_policy_rule(self, table):
        if table in self.rules:
            return False
        self.rules.append(table)
        return True

    def routes(self, table=5050):
        return dict(self.tables.get(table, {}))


class StaticPeers(PeerEnumerator):
    def __init__(self, peers=None):
        self.peers = list(peers or [])
        self.fail = False

    def list_peers(self):
        if self.fail:
            raise PeerQueryFailed("podman API unreachable")
        return list(self.peers)


@pytest.fixture
def table():
    return MemoryRoutingTable()


@pytest.fixture
def peers():
    return StaticPeers()


def peer(name, address, *subnets):
    return Peer(name=name, address=address, subnets=tuple(subnets))
