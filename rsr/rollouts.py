"""Per-pass planning: which containers to stop, remove and create.

`plan_pass` is a pure function of the observed records and the desired
state. It never talks to the engine, so every decision can be tested by
feeding it records.

Rolling update policy:
 - new-version replicas are added up to the deficit, one per pass while an
   old-version replica is still alive
 - an old-version replica is retired (one per pass) only once the new
   version alone has `desired_replicas` running
 - surplus new-version replicas are trimmed oldest first

A `stuck` container (never reached running within the pending timeout) is
handled like an exited one: it holds its slot through backoff and is then
removed and replaced.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .runtime import ContainerRecord, ContainerStatus, DesiredState


class ActionKind(str, Enum):
    STOP = "stop"
    REMOVE = "remove"
    CREATE = "create"


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    container_id: str | None = None
    version_label: str = ""
    reason: str = ""
    # Dead container whose slot this create refills, and its crash count.
    replaces: str | None = None
    failure_count: int = 0


@dataclass
class RolloutPlan:
    stops: list[Action] = field(default_factory=list)
    removals: list[Action] = field(default_factory=list)
    creates: list[Action] = field(default_factory=list)
    # Dead slots still inside their backoff window.
    held: list[ContainerRecord] = field(default_factory=list)

    @property
    def actions(self) -> list[Action]:
        # Stops and removals always go out before any create.
        return [*self.stops, *self.removals, *self.creates]

    @property
    def empty(self) -> bool:
        return not (self.stops or self.removals or self.creates)


def _always(_: ContainerRecord) -> bool:
    return True


def _never(_: str | None) -> bool:
    return False


def _dead(rec: ContainerRecord) -> bool:
    return rec.is_exited or rec.stuck


def effective_batch(roll_max_batch: int | None, deficit: int, stale_alive: int) -> int:
    if roll_max_batch is not None and roll_max_batch > 0:
        return roll_max_batch
    return 1 if stale_alive else deficit


def _retire(plan: RolloutPlan, rec: ContainerRecord, reason: str) -> None:
    plan.stops.append(Action(ActionKind.STOP, rec.id, rec.version_label, reason))
    plan.removals.append(Action(ActionKind.REMOVE, rec.id, rec.version_label, reason))


def _remove(plan: RolloutPlan, rec: ContainerRecord, reason: str) -> None:
    plan.removals.append(Action(ActionKind.REMOVE, rec.id, rec.version_label, reason))


def plan_pass(
    records: list[ContainerRecord],
    desired: DesiredState,
    *,
    roll_max_batch: int | None = None,
    is_eligible: Callable[[ContainerRecord], bool] = _always,
    is_retired: Callable[[str | None], bool] = _never,
) -> RolloutPlan:
    """Decide this pass's actions.

    `records` must be ordered oldest first (as `observer.observe` returns
    them). `is_eligible` gates replacement of dead slots that are backing
    off; `is_retired` marks containers this process stopped on purpose.
    """
    plan = RolloutPlan()
    target = desired.desired_replicas
    version = desired.version_label

    current = [r for r in records if r.version_label == version]
    stale = [r for r in records if r.version_label != version]

    if target == 0:
        for rec in stale + current:
            if _dead(rec):
                _remove(plan, rec, "drain")
            else:
                _retire(plan, rec, "drain")
        return plan

    running = [r for r in current if r.is_running]
    pending = [r for r in current if r.status is ContainerStatus.UNKNOWN and not r.stuck]
    dead = [r for r in current if _dead(r) and not is_retired(r.id)]
    stale_alive = [r for r in stale if not _dead(r)]

    for rec in stale:
        if _dead(rec):
            _remove(plan, rec, "stale exited")
    for rec in current:
        if rec.is_exited and is_retired(rec.id):
            _remove(plan, rec, "retired")

    # Retire old versions only once the new one fully covers the target.
    if stale_alive and len(running) >= target:
        _retire(plan, stale_alive[0], f"rolling update to {version}")

    if len(running) > target:
        for rec in running[: len(running) - target]:
            _retire(plan, rec, "scale down")

    deficit = max(0, target - len(running) - len(pending))

    slots = dead[:deficit]
    for rec in dead[deficit:]:
        _remove(plan, rec, "surplus exited")

    replaceable: list[ContainerRecord] = []
    for rec in slots:
        if is_eligible(rec):
            replaceable.append(rec)
        else:
            plan.held.append(rec)

    batch = effective_batch(roll_max_batch, deficit, len(stale_alive))
    budget = min(deficit - len(plan.held), batch)

    for rec in replaceable[:budget]:
        _remove(plan, rec, "replace exited")
        plan.creates.append(
            Action(
                ActionKind.CREATE,
                version_label=version,
                reason="replace exited",
                replaces=rec.id,
                failure_count=rec.failure_count,
            )
        )
    fresh = max(0, budget - len(replaceable))
    for _ in range(fresh):
        plan.creates.append(Action(ActionKind.CREATE, version_label=version, reason="scale up"))
    return plan
