from __future__ import annotations

from threading import Event, Thread

from . import db
from .iproute import RoutingTableGateway
from .podman_ops import PeerEnumerator
from .routes import (
    CONFLICT_POLICIES,
    PassInProgress,
    PeerQueryFailed,
    ReconcileError,
    Route,
    RouteCommandError,
    TableReadFailed,
    build_route_map,
    compute_diff,
)
from .runtime import ReconcileReport, RouteFailure, RuntimeState
from .settings import settings


class Reconciler:
    """Converges a policy routing table onto the routes advertised by mesh peers."""

    def __init__(
        self,
        peers: PeerEnumerator,
        table: RoutingTableGateway,
        runtime: RuntimeState | None = None,
        table_id: int | None = None,
        conflict_policy: str | None = None,
        poll_interval_s: int | None = None,
    ):
        self.peers = peers
        self.table = table
        self.runtime = runtime or RuntimeState()
        self.table_id = int(table_id if table_id is not None else settings.routing_table)
        self.conflict_policy = conflict_policy or settings.conflict_policy
        if self.conflict_policy not in CONFLICT_POLICIES:
            raise ValueError(
                f"Unknown conflict policy '{self.conflict_policy}'. Use one of: {', '.join(sorted(CONFLICT_POLICIES))}."
            )
        self.poll_interval_s = max(1, int(poll_interval_s or settings.poll_interval_s))
        self._stop = Event()
        self._thr: Thread | None = None

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self._loop, daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop.set()

    @property
    def running(self) -> bool:
        return bool(self._thr and self._thr.is_alive())

    def _loop(self) -> None:
        db.log_event("INFO", f"Route sync started for table {self.table_id} (every {self.poll_interval_s}s)")
        while not self._stop.is_set():
            try:
                self.run_once()
            except ReconcileError:
                # Logged by run_once; the next tick retries.
                pass
            except Exception as e:
                db.log_event("ERROR", f"Route sync tick failed: {type(e).__name__}: {e}")
            self._stop.wait(self.poll_interval_s)
        db.log_event("INFO", "Route sync stopped")

    def run_once(self) -> ReconcileReport:
        """Run one guarded pass and record its outcome.

        Raises PassInProgress if another pass holds the slot, or the
        query-phase error that aborted the pass.
        """
        if not self.runtime.try_begin_pass():
            raise PassInProgress("A reconciliation pass is already running")
        started_at = db.utc_now()
        try:
            try:
                report = self.reconcile()
            except ReconcileError as e:
                msg = f"Pass aborted: {e}"
                self.runtime.record_error(msg)
                db.log_event("ERROR", msg)
                db.record_run(started_at, "aborted", message=str(e))
                raise
            self.runtime.record_report(report)
            db.record_run(
                report.started_at,
                report.status,
                added=len(report.added),
                removed=len(report.removed),
                failures=len(report.failures),
            )
            return report
        finally:
            self.runtime.end_pass()

    def reconcile(self) -> ReconcileReport:
        """One reconciliation pass: query, diff, apply.

        Events are written after the apply phase so a failing event log
        cannot cut the host changes short.
        """
        report = ReconcileReport(table=self.table_id, dry_run=bool(getattr(self.table, "dry_run", False)))
        events: list[tuple[str, str, str | None, str | None]] = []

        try:
            advertised = list(self.peers.list_peer_routes())
        except PeerQueryFailed:
            raise
        except Exception as e:
            raise PeerQueryFailed(f"{type(e).__name__}: {e}") from e

        try:
            installed = list(self.table.list_installed_routes(self.table_id))
        except TableReadFailed:
            raise
        except Exception as e:
            raise TableReadFailed(f"{type(e).__name__}: {e}") from e

        desired = build_route_map(advertised, self.conflict_policy)

        for c in desired.conflicts:
            report.conflicts.append(c)
            if c.destination in desired.skipped:
                report.failures.append(RouteFailure("conflict", c.destination, None, str(c)))
                events.append(("WARN", f"Skipping {c}", c.destination, None))
            else:
                kept = desired.routes[c.destination]
                events.append(("WARN", f"Using {kept} for {c}", c.destination, kept))

        diff = compute_diff(desired.routes, installed, keep=desired.skipped)
        report.unchanged = len(desired.routes) - len(diff.to_add)

        # A moved destination must be withdrawn before the new nexthop can be added.
        moved = diff.changed_destinations
        for r in diff.to_remove:
            if r.destination in moved:
                self._remove(r, report, events)
        for r in diff.to_add:
            self._add(r, report, events)
        for r in diff.to_remove:
            if r.destination not in moved:
                self._remove(r, report, events)

        try:
            report.rule_created = bool(self.table.ensure_policy_rule(self.table_id))
        except RouteCommandError as e:
            report.failures.append(RouteFailure("rule", None, None, str(e)))
            events.append(("ERROR", f"Cannot add policy rule for table {self.table_id}: {e}", None, None))
        else:
            if report.rule_created:
                events.append(("INFO", f"Added table {self.table_id} to routing policy database", None, None))

        report.finished_at = db.utc_now()
        for level, message, destination, nexthop in events:
            db.log_event(level, message, destination=destination, nexthop=nexthop)
        return report

    def _add(self, r: Route, report: ReconcileReport, events: list) -> None:
        try:
            self.table.add_route(r.destination, r.nexthop, self.table_id)
        except RouteCommandError as e:
            report.failures.append(RouteFailure("add", r.destination, r.nexthop, str(e)))
            events.append(("ERROR", f"Failed to add route {r}: {e}", r.destination, r.nexthop))
            return
        report.added.append(r)
        events.append(("INFO", f"Added route {r}", r.destination, r.nexthop))

    def _remove(self, r: Route, report: ReconcileReport, events: list) -> None:
        try:
            self.table.remove_route(r.destination, r.nexthop, self.table_id)
        except RouteCommandError as e:
            report.failures.append(RouteFailure("remove", r.destination, r.nexthop, str(e)))
            events.append(("ERROR", f"Failed to remove route {r}: {e}", r.destination, r.nexthop))
            return
        report.removed.append(r)
        events.append(("INFO", f"Removed route {r}", r.destination, r.nexthop))
