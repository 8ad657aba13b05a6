import base64

import pytest
from fastapi.testclient import TestClient

import main
from conftest import MemoryRoutingTable, StaticPeers, peer
from nmroutes.reconciler import Reconciler
from nmroutes.settings import Settings


def _basic_auth(user: str, password: str) -> dict:
    token = base64.b64encode(f"{user}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


@pytest.fixture
def rec():
    peers = StaticPeers([peer("netmaker-server", "10.88.0.2", "10.0.1.0/24")])
    table = MemoryRoutingTable({"10.0.2.0/24": "10.88.0.5"})
    return Reconciler(peers=peers, table=table, table_id=5050)


@pytest.fixture
def client(rec):
    # The background loop stays off so tests drive passes explicitly.
    with TestClient(main.create_app(reconciler=rec, start_loop=False)) as c:
        yield c


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy"}


def test_reconcile_then_status(client, rec):
    r = client.post("/reconcile")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["added"] == [{"destination": "10.0.1.0/24", "nexthop": "10.88.0.2"}]
    assert body["removed"] == [{"destination": "10.0.2.0/24", "nexthop": "10.88.0.5"}]
    assert body["rule_created"] is True

    st = client.get("/status").json()
    assert st["table"] == 5050
    assert st["passes"] == 1
    assert st["loop_running"] is False
    assert st["last_report"]["added"][0]["destination"] == "10.0.1.0/24"


def test_reconcile_abort_maps_to_502(client, rec):
    rec.peers.fail = True
    r = client.post("/reconcile")
    assert r.status_code == 502
    assert "podman API unreachable" in r.json()["detail"]
    assert client.get("/status").json()["last_error"].startswith("Pass aborted")


def test_reconcile_busy_maps_to_409(client, rec):
    assert rec.runtime.try_begin_pass()
    try:
        r = client.post("/reconcile")
    finally:
        rec.runtime.end_pass()
    assert r.status_code == 409


def test_routes_and_peers(client):
    assert client.get("/routes").json() == [{"destination": "10.0.2.0/24", "nexthop": "10.88.0.5"}]
    assert client.get("/peers").json() == [
        {"name": "netmaker-server", "address": "10.88.0.2", "subnets": ["10.0.1.0/24"]}
    ]


def test_events_and_runs(client):
    client.post("/reconcile")
    runs = client.get("/runs").json()
    assert runs[0]["status"] == "ok"
    assert runs[0]["added"] == 1 and runs[0]["removed"] == 1
    events = client.get("/events", params={"limit": 50}).json()
    assert any(e["message"] == "Removed route 10.0.2.0/24 via 10.88.0.5" for e in events)


def test_reconcile_requires_basic_auth_when_password_set(client, monkeypatch):
    monkeypatch.setattr(main, "settings", Settings(api_user="admin", api_password="s3cret"))

    assert client.post("/reconcile").status_code == 401
    assert client.post("/reconcile", headers=_basic_auth("admin", "wrong")).status_code == 401
    assert client.post("/reconcile", headers=_basic_auth("admin", "s3cret")).status_code == 200
    # read-only endpoints stay open
    assert client.get("/status").status_code == 200
