from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Query

from rsr import db
from rsr.alerts import CrashLoopAlerter
from rsr.api_models import ContainerOut, DesiredStateOut, PassOut, StatusOut
from rsr.backoff import BackoffTracker
from rsr.docker_ops import DockerGateway, validate_desired_state
from rsr.gateway import ReconnectPolicy
from rsr.reconciler import Reconciler
from rsr.runtime import RuntimeState
from rsr.settings import Settings, settings


def build_reconciler(cfg: Settings, runtime: RuntimeState | None = None) -> Reconciler:
    desired = cfg.desired_state()
    validate_desired_state(desired)
    return Reconciler(
        DockerGateway(network=cfg.docker_network, timeout_s=cfg.gateway_timeout_s, stop_timeout_s=cfg.stop_timeout_s),
        desired,
        poll_interval_s=cfg.poll_interval_s,
        roll_max_batch=cfg.roll_batch(),
        tracker=BackoffTracker(cfg.backoff_base_s, cfg.backoff_cap_s, cfg.forgive_after_s, cfg.pending_timeout_s),
        reconnect=ReconnectPolicy(cfg.reconnect_delay_s, cfg.reconnect_max_attempts),
        alerter=CrashLoopAlerter(cfg.alert_failure_threshold, cfg),
        runtime=runtime,
    )


def create_app(reconciler: Reconciler | None = None, start_loop: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.init_db()
        rec = reconciler or build_reconciler(settings)
        app.state.reconciler = rec
        if start_loop:
            rec.start()
        try:
            yield
        finally:
            rec.stop(timeout=5)

    app = FastAPI(title="Replica Set Reconciler", lifespan=lifespan)

    @app.get("/status", response_model=StatusOut)
    def status() -> StatusOut:
        rec: Reconciler = app.state.reconciler
        passes, last, last_ok = rec.runtime.snapshot()
        records = last_ok.records if last_ok else []
        version = rec.desired.version_label
        running_current = sum(1 for r in records if r.is_running and r.version_label == version)
        running_stale = sum(1 for r in records if r.is_running and r.version_label != version)
        return StatusOut(
            desired=DesiredStateOut.from_desired(rec.desired),
            passes=passes,
            running_current=running_current,
            running_stale=running_stale,
            converged=last_ok is not None
            and running_current == rec.desired.desired_replicas
            and len(records) == running_current,
            last_pass=PassOut.from_result(last) if last else None,
        )

    @app.get("/containers", response_model=list[ContainerOut])
    def containers() -> list[ContainerOut]:
        rec: Reconciler = app.state.reconciler
        _, _, last_ok = rec.runtime.snapshot()
        return [ContainerOut.from_record(r) for r in (last_ok.records if last_ok else [])]

    @app.get("/events")
    def events(limit: int = Query(100, ge=1, le=1000)) -> list[dict]:
        return db.latest_events(limit)

    return app


app = create_app()
