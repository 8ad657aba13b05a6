from __future__ import annotations

import secrets
from dataclasses import asdict

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from nmroutes import PassInProgress, ReconcileError, Reconciler, build_reconciler, db
from nmroutes.api_models import PeerModel, ReportModel, RouteModel, StatusModel
from nmroutes.settings import settings

security = HTTPBasic(auto_error=False)


def require_admin(credentials: HTTPBasicCredentials | None = Depends(security)) -> str | None:
    """Basic auth for mutating endpoints, enforced only when NMR_API_PASSWORD is set."""
    if not settings.api_password:
        return None
    if credentials is None or not (
        secrets.compare_digest(credentials.username, settings.api_user)
        and secrets.compare_digest(credentials.password, settings.api_password)
    ):
        raise HTTPException(status_code=401, detail="Invalid credentials", headers={"WWW-Authenticate": "Basic"})
    return credentials.username


def create_app(reconciler: Reconciler | None = None, start_loop: bool | None = None) -> FastAPI:
    rec = reconciler or build_reconciler()
    run_loop = settings.enable_loop if start_loop is None else start_loop

    app = FastAPI(title="Netmaker Route Sync")
    app.state.reconciler = rec

    @app.on_event("startup")
    def startup() -> None:
        db.init_db()
        if run_loop:
            rec.start()

    @app.on_event("shutdown")
    def shutdown() -> None:
        rec.stop()

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/status", response_model=StatusModel)
    def status() -> StatusModel:
        rt = rec.runtime
        return StatusModel(
            table=rec.table_id,
            loop_running=rec.running,
            pass_running=rt.pass_running,
            passes=rt.passes,
            aborted=rt.aborted,
            last_report=ReportModel.from_report(rt.last_report) if rt.last_report else None,
            last_error=rt.last_error,
            last_error_at=rt.last_error_at,
        )

    @app.post("/reconcile", response_model=ReportModel)
    def reconcile(_user: str | None = Depends(require_admin)) -> ReportModel:
        try:
            report = rec.run_once()
        except PassInProgress as e:
            raise HTTPException(status_code=409, detail=str(e))
        except ReconcileError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return ReportModel.from_report(report)

    @app.get("/routes", response_model=list[RouteModel])
    def routes() -> list[RouteModel]:
        try:
            installed = rec.table.list_installed_routes(rec.table_id)
        except ReconcileError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return [RouteModel.from_route(r) for r in sorted(installed)]

    @app.get("/peers", response_model=list[PeerModel])
    def peers() -> list[PeerModel]:
        try:
            found = rec.peers.list_peers()
        except ReconcileError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return [PeerModel.from_peer(p) for p in found]

    @app.get("/events")
    def events(limit: int = Query(100, ge=1, le=1000)) -> list[dict]:
        return db.latest_events(limit)

    @app.get("/runs")
    def runs(limit: int = Query(20, ge=1, le=1000)) -> list[dict]:
        return [asdict(r) for r in db.latest_runs(limit)]

    return app


app = create_app()
