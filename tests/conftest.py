import os
import sys

import pytest

# Ensure project root is importable (so `import main` / `import cli` work without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from rsr import db  # noqa: E402
from rsr.gateway import CreateError, GatewayConnectionError, GatewayError, NotFoundError, RawContainer  # noqa: E402
from rsr.observer import SERVICE_LABEL, VERSION_LABEL  # noqa: E402
from rsr.runtime import DesiredState  # noqa: E402


@pytest.fixture(autouse=True)
def event_db(tmp_path):
    """Keep the event log out of the working directory."""
    db.init_db(str(tmp_path / "events.db"))
    yield


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway:
    """In-memory container engine. Created containers start out running."""

    def __init__(self):
        self.containers: dict[str, RawContainer] = {}
        self.calls: list[tuple[str, str]] = []
        self.down = False
        self.fail_create = False
        self.fail_stop: set[str] = set()
        self.fail_remove: set[str] = set()
        self.pings = 0
        self.version = "24.0.7"
        self._seq = 0

    def add(self, version: str = "v1", status: str = "running", service: str = "web", labels=None) -> str:
        self._seq += 1
        cid = f"c{self._seq:04d}" + "0" * 8
        lab = {SERVICE_LABEL: service, VERSION_LABEL: version}
        if labels is not None:
            lab = labels
        self.containers[cid] = RawContainer(id=cid, labels=lab, status=status, created_at=float(self._seq))
        return cid

    def set_status(self, cid: str, status: str) -> None:
        c = self.containers[cid]
        self.containers[cid] = RawContainer(id=c.id, labels=c.labels, status=status, created_at=c.created_at)

    def ids(self, version: str | None = None, status: str | None = None) -> list[str]:
        return [
            c.id
            for c in self.containers.values()
            if (version is None or c.labels.get(VERSION_LABEL) == version) and (status is None or c.status == status)
        ]

    def calls_of(self, kind: str) -> list[str]:
        return [cid for k, cid in self.calls if k == kind]

    # RuntimeGateway

    def ping(self) -> str:
        self.pings += 1
        if self.down:
            raise GatewayConnectionError("engine down")
        return self.version

    def list_containers(self, label_filter):
        if self.down:
            raise GatewayConnectionError("engine down")
        return [
            c for c in self.containers.values() if all(c.labels.get(k) == v for k, v in label_filter.items())
        ]

    def create_container(self, image, labels):
        self.calls.append(("create", labels.get(VERSION_LABEL, "")))
        if self.fail_create:
            raise CreateError(f"image {image} not found")
        return self.add(labels=dict(labels))

    def stop_container(self, container_id):
        self.calls.append(("stop", container_id))
        if container_id in self.fail_stop:
            raise GatewayError("stop timed out")
        if container_id not in self.containers:
            raise NotFoundError(container_id)
        self.set_status(container_id, "exited")

    def remove_container(self, container_id):
        self.calls.append(("remove", container_id))
        if container_id in self.fail_remove:
            raise GatewayError("device busy")
        if container_id not in self.containers:
            raise NotFoundError(container_id)
        del self.containers[container_id]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway()


def desired(replicas: int = 3, version: str = "v1") -> DesiredState:
    return DesiredState(service_name="web", image=f"example/web:{version}", version_label=version, desired_replicas=replicas)
