from __future__ import annotations

from collections.abc import Iterable

from .gateway import RawContainer
from .runtime import ContainerRecord, ContainerStatus

SERVICE_LABEL = "rsr.service"
VERSION_LABEL = "rsr.version"

_RUNNING = {"running"}
# "dead" is a container the engine failed to remove; for us it is just as gone.
_EXITED = {"exited", "dead"}


def classify_status(raw_status: str) -> ContainerStatus:
    s = (raw_status or "").strip().lower()
    if s in _RUNNING:
        return ContainerStatus.RUNNING
    if s in _EXITED:
        return ContainerStatus.EXITED
    return ContainerStatus.UNKNOWN


def observe(raw: Iterable[RawContainer], service_name: str) -> list[ContainerRecord]:
    """Turn the engine's container list into records for one service.

    Containers without an exact `rsr.service` match belong to other
    workloads and are dropped. Output is ordered oldest first (ties by id)
    so repeated passes over the same input see the same order.
    """
    records = [
        ContainerRecord(
            id=c.id,
            service_label=c.labels.get(SERVICE_LABEL, ""),
            version_label=c.labels.get(VERSION_LABEL, ""),
            status=classify_status(c.status),
            created_at=c.created_at,
        )
        for c in raw
        if c.labels.get(SERVICE_LABEL) == service_name
    ]
    records.sort(key=lambda r: (r.created_at, r.id or ""))
    return records
