from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock

from .db import utc_now
from .routes import Conflict, Route


@dataclass(frozen=True)
class RouteFailure:
    operation: str  # add|remove|conflict|rule
    destination: str | None
    nexthop: str | None
    error: str


@dataclass
class ReconcileReport:
    table: int
    started_at: str = field(default_factory=utc_now)
    finished_at: str | None = None
    added: list[Route] = field(default_factory=list)
    removed: list[Route] = field(default_factory=list)
    unchanged: int = 0
    conflicts: list[Conflict] = field(default_factory=list)
    failures: list[RouteFailure] = field(default_factory=list)
    rule_created: bool = False
    # changes were logged by the gateway, not applied
    dry_run: bool = False

    @property
    def status(self) -> str:
        return "partial" if self.failures else "ok"


class RuntimeState:
    """In-memory state shared by the loop, the API and the CLI."""

    def __init__(self) -> None:
        self.lock = Lock()
        self._pass_lock = Lock()
        self.last_report: ReconcileReport | None = None
        self.last_error: str | None = None
        self.last_error_at: str | None = None
        self.passes: int = 0
        self.aborted: int = 0

    def try_begin_pass(self) -> bool:
        """Claim the single pass slot. Returns False if a pass is already in flight."""
        return self._pass_lock.acquire(blocking=False)

    def end_pass(self) -> None:
        self._pass_lock.release()

    @property
    def pass_running(self) -> bool:
        return self._pass_lock.locked()

    def record_report(self, report: ReconcileReport) -> None:
        with self.lock:
            self.passes += 1
            self.last_report = report

    def record_error(self, message: str) -> None:
        with self.lock:
            self.passes += 1
            self.aborted += 1
            self.last_error = message
            self.last_error_at = utc_now()
