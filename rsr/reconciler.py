from __future__ import annotations

import threading
import time
from collections.abc import Callable

from . import db
from .alerts import CrashLoopAlerter
from .backoff import BackoffTracker
from .gateway import GatewayError, NotFoundError, ReconnectPolicy, RuntimeGateway
from .observer import SERVICE_LABEL, VERSION_LABEL, observe
from .rollouts import Action, RolloutPlan, plan_pass
from .runtime import ActionFailure, DesiredState, PassResult, RuntimeState


class Reconciler:
    """Continuously drives the engine's containers toward the desired state.

    One pass at a time: observe, update crash bookkeeping, plan, act. Nothing
    is carried between passes except crash history, so a failed action is
    simply planned again on the next pass.
    """

    def __init__(
        self,
        gateway: RuntimeGateway,
        desired: DesiredState,
        *,
        poll_interval_s: float = 5.0,
        roll_max_batch: int | None = None,
        tracker: BackoffTracker | None = None,
        reconnect: ReconnectPolicy | None = None,
        alerter: CrashLoopAlerter | None = None,
        runtime: RuntimeState | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.gateway = gateway
        self.desired = desired
        self.poll_interval_s = max(0.0, float(poll_interval_s))
        self.roll_max_batch = roll_max_batch
        self.tracker = tracker or BackoffTracker()
        self.reconnect = reconnect or ReconnectPolicy()
        self.alerter = alerter
        self.runtime = runtime or RuntimeState()
        self.clock = clock
        self._stop = threading.Event()
        self._thr: threading.Thread | None = None

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = threading.Thread(target=self.run_forever, name="rsr-reconciler", daemon=True)
        self._thr.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thr:
            self._thr.join(timeout)

    def run_forever(self) -> None:
        db.log_event(
            "INFO",
            f"Reconciler started: {self.desired.desired_replicas} x {self.desired.image}",
            service_name=self.desired.service_name,
            version=self.desired.version_label,
        )
        while not self._stop.is_set():
            try:
                result = self.run_pass()
            except Exception as e:
                db.log_event("ERROR", f"Reconciler pass failed: {type(e).__name__}: {e}", service_name=self.desired.service_name)
                self._stop.wait(self.poll_interval_s)
                continue
            if result.suspended:
                if not self.reconnect.wait(self.gateway, self._stop):
                    if not self._stop.is_set():
                        # Reconnect gave up; keep trying on the normal cadence.
                        self._stop.wait(self.poll_interval_s)
                continue
            self._stop.wait(self.poll_interval_s)
        db.log_event("INFO", "Reconciler stopped", service_name=self.desired.service_name)

    def run_pass(self) -> PassResult:
        """Run one observe/decide/act cycle and return what happened."""
        result = PassResult()
        svc = self.desired.service_name
        try:
            raw = self.gateway.list_containers({SERVICE_LABEL: svc})
        except GatewayError as e:
            result.suspended = True
            result.message = f"Cannot list containers: {e}"
            db.log_event("WARN", f"Pass suspended. {result.message}", service_name=svc)
            self.runtime.record_pass(result)
            return result

        now = self.clock()
        records = observe(raw, svc)
        result.records = records

        bk = self.tracker.observe(records, now)
        for rec in bk.failed:
            retry_in = (rec.next_eligible_at or now) - now
            what = "did not start in time" if rec.stuck else "exited"
            db.log_event(
                "WARN",
                f"Container {rec.id[:12]} {what} (failure #{rec.failure_count}); replacement allowed in {retry_in:.0f}s",
                service_name=svc,
                version=rec.version_label,
            )
            if self.alerter:
                self.alerter.crashed(svc, rec.version_label, rec.id, rec.failure_count, retry_in)
        for rec, previous in bk.forgiven:
            db.log_event(
                "INFO",
                f"Container {rec.id[:12]} running steadily; cleared {previous} recorded failures",
                service_name=svc,
                version=rec.version_label,
            )
            if self.alerter:
                self.alerter.recovered(svc, rec.version_label, rec.id, previous)

        plan = plan_pass(
            records,
            self.desired,
            roll_max_batch=self.roll_max_batch,
            is_eligible=lambda r: self.tracker.is_eligible(r, now),
            is_retired=self.tracker.is_retired,
        )
        result.skipped_backoff = len(plan.held)
        self._execute(plan, result)

        if result.changed:
            result.message = (
                f"stopped={len(result.stopped)} removed={len(result.removed)} "
                f"created={len(result.created)} failed={len(result.failures)} held={result.skipped_backoff}"
            )
            db.log_event("INFO", f"Pass complete: {result.message}", service_name=svc, version=self.desired.version_label)
        else:
            result.message = "in sync" if not plan.held else f"waiting on {len(plan.held)} slot(s) in backoff"
        self.runtime.record_pass(result)
        return result

    def _execute(self, plan: RolloutPlan, result: PassResult) -> None:
        stop_failed: set[str] = set()
        for action in plan.stops:
            if not self._do_stop(action, result):
                stop_failed.add(action.container_id or "")
        for action in plan.removals:
            if action.container_id in stop_failed:
                continue
            self._do_remove(action, result)
        for action in plan.creates:
            self._do_create(action, result)

    def _fail(self, action: Action, result: PassResult, e: Exception) -> None:
        result.failures.append(ActionFailure(kind=action.kind.value, container_id=action.container_id, error=str(e)))
        target = action.container_id[:12] if action.container_id else action.version_label
        db.log_event(
            "ERROR",
            f"{action.kind.value} {target} failed ({action.reason}): {type(e).__name__}: {e}",
            service_name=self.desired.service_name,
            version=action.version_label,
        )

    def _do_stop(self, action: Action, result: PassResult) -> bool:
        cid = action.container_id or ""
        try:
            self.gateway.stop_container(cid)
        except NotFoundError:
            db.log_event("WARN", f"Container {cid[:12]} already gone before stop", service_name=self.desired.service_name)
        except GatewayError as e:
            self._fail(action, result, e)
            return False
        # The exit this causes must not count as a crash.
        self.tracker.mark_retired(cid)
        result.stopped.append(cid)
        db.log_event(
            "INFO",
            f"Stopped container {cid[:12]} ({action.reason})",
            service_name=self.desired.service_name,
            version=action.version_label,
        )
        return True

    def _do_remove(self, action: Action, result: PassResult) -> None:
        cid = action.container_id or ""
        try:
            self.gateway.remove_container(cid)
        except NotFoundError:
            pass
        except GatewayError as e:
            self._fail(action, result, e)
            return
        self.tracker.forget(cid)
        result.removed.append(cid)
        db.log_event(
            "INFO",
            f"Removed container {cid[:12]} ({action.reason})",
            service_name=self.desired.service_name,
            version=action.version_label,
        )

    def _do_create(self, action: Action, result: PassResult) -> None:
        labels = {SERVICE_LABEL: self.desired.service_name, VERSION_LABEL: action.version_label}
        try:
            cid = self.gateway.create_container(self.desired.image, labels)
        except GatewayError as e:
            self._fail(action, result, e)
            return
        if action.replaces:
            self.tracker.inherit(cid, action.failure_count)
        result.created.append(cid)
        db.log_event(
            "INFO",
            f"Created container {cid[:12]} from {self.desired.image} ({action.reason})",
            service_name=self.desired.service_name,
            version=action.version_label,
        )
