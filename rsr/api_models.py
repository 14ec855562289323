from __future__ import annotations

from pydantic import BaseModel, Field

from .runtime import ContainerRecord, DesiredState, PassResult


class DesiredStateOut(BaseModel):
    service: str
    image: str
    version: str
    replicas: int = Field(..., ge=0)

    @classmethod
    def from_desired(cls, d: DesiredState) -> "DesiredStateOut":
        return cls(service=d.service_name, image=d.image, version=d.version_label, replicas=d.desired_replicas)


class ActionFailureOut(BaseModel):
    kind: str
    container_id: str | None = None
    error: str


class PassOut(BaseModel):
    started_at: str
    suspended: bool
    message: str
    stopped: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    created: list[str] = Field(default_factory=list)
    skipped_backoff: int = 0
    failures: list[ActionFailureOut] = Field(default_factory=list)

    @classmethod
    def from_result(cls, r: PassResult) -> "PassOut":
        return cls(
            started_at=r.started_at,
            suspended=r.suspended,
            message=r.message,
            stopped=list(r.stopped),
            removed=list(r.removed),
            created=list(r.created),
            skipped_backoff=r.skipped_backoff,
            failures=[ActionFailureOut(kind=f.kind, container_id=f.container_id, error=f.error) for f in r.failures],
        )


class ContainerOut(BaseModel):
    id: str | None
    version: str
    status: str
    created_at: float
    failure_count: int = 0
    next_eligible_at: float | None = None
    stuck: bool = False

    @classmethod
    def from_record(cls, r: ContainerRecord) -> "ContainerOut":
        return cls(
            id=r.id,
            version=r.version_label,
            status=r.status.value,
            created_at=r.created_at,
            failure_count=r.failure_count,
            next_eligible_at=r.next_eligible_at,
            stuck=r.stuck,
        )


class StatusOut(BaseModel):
    desired: DesiredStateOut
    passes: int
    running_current: int = Field(0, description="Running containers with the desired version")
    running_stale: int = Field(0, description="Running containers with any other version")
    converged: bool = False
    last_pass: PassOut | None = None
