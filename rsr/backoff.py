from __future__ import annotations

from dataclasses import dataclass, field

from .runtime import ContainerRecord, ContainerStatus


def backoff_duration(failure_count: int, base_s: float = 5.0, cap_s: float = 300.0) -> float:
    """Seconds a slot must wait after its `failure_count`-th consecutive crash.

    Doubles from `base_s` and is clamped at `cap_s`; never decreases as the
    count grows.
    """
    if failure_count <= 0:
        return 0.0
    exp = min(failure_count - 1, 32)
    return float(min(cap_s, base_s * (2**exp)))


@dataclass
class _History:
    failure_count: int = 0
    next_eligible_at: float | None = None
    # A failure has been counted and no Running observation followed it yet.
    down: bool = False
    running_since: float | None = None
    pending_since: float | None = None


@dataclass
class Bookkeeping:
    failed: list[ContainerRecord] = field(default_factory=list)
    # (record, failure count before it was cleared)
    forgiven: list[tuple[ContainerRecord, int]] = field(default_factory=list)


class BackoffTracker:
    """Per-container crash history, kept in memory only.

    Keyed by container id. A replacement container inherits the history of
    the one it replaces, which is what lets the delay grow across a crash
    loop. Entries disappear once their container is no longer listed.

    A container that stays neither running nor exited (created, restarting,
    paused) for `pending_timeout_s` counts as one failure and is flagged
    `stuck`, so the planner replaces it like an exited slot.

    History clears once the container has been Running for
    `forgive_after_s`; the default 0 clears it on the first Running
    observation.
    """

    def __init__(
        self,
        base_s: float = 5.0,
        cap_s: float = 300.0,
        forgive_after_s: float = 0.0,
        pending_timeout_s: float = 60.0,
    ):
        self.base_s = max(0.0, float(base_s))
        self.cap_s = max(self.base_s, float(cap_s))
        self.forgive_after_s = max(0.0, float(forgive_after_s))
        self.pending_timeout_s = max(0.0, float(pending_timeout_s))
        self._history: dict[str, _History] = {}
        self._retired: set[str] = set()

    def duration(self, failure_count: int) -> float:
        return backoff_duration(failure_count, self.base_s, self.cap_s)

    def _count_failure(self, h: _History, now: float) -> None:
        h.failure_count += 1
        h.next_eligible_at = now + self.duration(h.failure_count)
        h.down = True

    def observe(self, records: list[ContainerRecord], now: float) -> Bookkeeping:
        """Update crash bookkeeping from a fresh observation.

        Annotates each record with its failure count, eligibility time and
        `stuck` flag.
        """
        out = Bookkeeping()
        seen: set[str] = set()
        for rec in records:
            if rec.id is None:
                continue
            seen.add(rec.id)
            h = self._history.setdefault(rec.id, _History())
            retired = rec.id in self._retired

            if rec.status is ContainerStatus.EXITED:
                h.running_since = None
                h.pending_since = None
                if not h.down and not retired:
                    self._count_failure(h, now)
                    out.failed.append(rec)
            elif rec.status is ContainerStatus.RUNNING:
                h.down = False
                h.pending_since = None
                if h.running_since is None:
                    h.running_since = now
                if h.failure_count and now - h.running_since >= self.forgive_after_s:
                    out.forgiven.append((rec, h.failure_count))
                    h.failure_count = 0
                    h.next_eligible_at = None
            else:
                h.running_since = None
                if h.pending_since is None:
                    h.pending_since = now
                if not h.down and not retired and now - h.pending_since >= self.pending_timeout_s:
                    self._count_failure(h, now)
                    out.failed.append(rec)

            rec.failure_count = h.failure_count
            rec.next_eligible_at = h.next_eligible_at
            rec.stuck = rec.status is ContainerStatus.UNKNOWN and h.down

        for gone in set(self._history) - seen:
            del self._history[gone]
        self._retired &= seen
        return out

    def is_eligible(self, record: ContainerRecord, now: float) -> bool:
        return record.next_eligible_at is None or now >= record.next_eligible_at

    def inherit(self, new_id: str, failure_count: int) -> None:
        """Carry the crash count of a replaced container over to its replacement."""
        if failure_count > 0:
            self._history[new_id] = _History(failure_count=failure_count)

    def mark_retired(self, container_id: str) -> None:
        """Deliberately stopped containers do not count as crashes."""
        self._retired.add(container_id)

    def is_retired(self, container_id: str | None) -> bool:
        return container_id is not None and container_id in self._retired

    def forget(self, container_id: str) -> None:
        self._history.pop(container_id, None)
        self._retired.discard(container_id)

    def failure_count(self, container_id: str) -> int:
        h = self._history.get(container_id)
        return h.failure_count if h else 0
