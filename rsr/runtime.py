from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ContainerStatus(str, Enum):
    RUNNING = "running"
    EXITED = "exited"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class DesiredState:
    service_name: str
    image: str
    version_label: str
    desired_replicas: int

    def __post_init__(self) -> None:
        if self.desired_replicas < 0:
            raise ValueError("desired_replicas must be a non-negative integer.")


@dataclass
class ContainerRecord:
    """One observed container of the managed service.

    `failure_count`, `next_eligible_at` and `stuck` are filled in by the
    backoff tracker; the observer leaves them at their defaults. A record is
    `stuck` when it stayed neither running nor exited past the pending
    timeout and was counted as a failure.
    """

    id: str | None
    service_label: str
    version_label: str
    status: ContainerStatus
    created_at: float = 0.0
    failure_count: int = 0
    next_eligible_at: float | None = None
    stuck: bool = False

    @property
    def is_running(self) -> bool:
        return self.status is ContainerStatus.RUNNING

    @property
    def is_exited(self) -> bool:
        return self.status is ContainerStatus.EXITED


@dataclass(frozen=True)
class ActionFailure:
    kind: str
    container_id: str | None
    error: str


@dataclass
class PassResult:
    """Outcome of one reconciliation pass."""

    started_at: str = field(default_factory=utc_now)
    suspended: bool = False
    message: str = ""
    records: list[ContainerRecord] = field(default_factory=list)
    stopped: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    skipped_backoff: int = 0
    failures: list[ActionFailure] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.stopped or self.removed or self.created or self.failures)


class RuntimeState:
    """In-memory snapshot of the latest pass, shared with the status API."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.passes = 0
        self.last_pass: PassResult | None = None
        self.last_ok_pass: PassResult | None = None

    def record_pass(self, result: PassResult) -> None:
        with self.lock:
            self.passes += 1
            self.last_pass = result
            if not result.suspended:
                self.last_ok_pass = result

    def snapshot(self) -> tuple[int, PassResult | None, PassResult | None]:
        with self.lock:
            return self.passes, self.last_pass, self.last_ok_pass
