from __future__ import annotations

from pydantic import BaseModel, Field

from .podman_ops import Peer
from .routes import Route
from .runtime import ReconcileReport


class RouteModel(BaseModel):
    destination: str = Field(..., description="Destination subnet (CIDR)")
    nexthop: str = Field(..., description="Gateway address")

    @classmethod
    def from_route(cls, r: Route) -> "RouteModel":
        return cls(destination=r.destination, nexthop=r.nexthop)


class FailureModel(BaseModel):
    operation: str = Field(..., description="add|remove|conflict|rule")
    destination: str | None = None
    nexthop: str | None = None
    error: str


class ConflictModel(BaseModel):
    destination: str
    nexthops: list[str]


class ReportModel(BaseModel):
    table: int
    status: str = Field(..., description="ok|partial")
    started_at: str
    finished_at: str | None = None
    added: list[RouteModel] = []
    removed: list[RouteModel] = []
    unchanged: int = 0
    conflicts: list[ConflictModel] = []
    failures: list[FailureModel] = []
    rule_created: bool = False
    dry_run: bool = False

    @classmethod
    def from_report(cls, rep: ReconcileReport) -> "ReportModel":
        return cls(
            table=rep.table,
            status=rep.status,
            started_at=rep.started_at,
            finished_at=rep.finished_at,
            added=[RouteModel.from_route(r) for r in rep.added],
            removed=[RouteModel.from_route(r) for r in rep.removed],
            unchanged=rep.unchanged,
            conflicts=[ConflictModel(destination=c.destination, nexthops=list(c.nexthops)) for c in rep.conflicts],
            failures=[
                FailureModel(operation=f.operation, destination=f.destination, nexthop=f.nexthop, error=f.error)
                for f in rep.failures
            ],
            rule_created=rep.rule_created,
            dry_run=rep.dry_run,
        )


class StatusModel(BaseModel):
    table: int
    loop_running: bool
    pass_running: bool
    passes: int
    aborted: int
    last_report: ReportModel | None = None
    last_error: str | None = None
    last_error_at: str | None = None


class PeerModel(BaseModel):
    name: str
    address: str
    subnets: list[str]

    @classmethod
    def from_peer(cls, p: Peer) -> "PeerModel":
        return cls(name=p.name, address=p.address, subnets=list(p.subnets))
