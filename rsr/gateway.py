from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Protocol

from . import db


class GatewayError(Exception):
    pass


class GatewayConnectionError(GatewayError):
    """The container engine could not be reached."""


class CreateError(GatewayError):
    pass


class NotFoundError(GatewayError):
    pass


@dataclass(frozen=True)
class RawContainer:
    id: str
    labels: dict[str, str] = field(default_factory=dict)
    status: str = ""
    created_at: float = 0.0


class RuntimeGateway(Protocol):
    """Container operations the reconciler relies on.

    Only the reconciler calls the mutating methods.
    """

    def ping(self) -> str | None: ...

    def list_containers(self, label_filter: dict[str, str]) -> list[RawContainer]: ...

    def create_container(self, image: str, labels: dict[str, str]) -> str: ...

    def stop_container(self, container_id: str) -> None: ...

    def remove_container(self, container_id: str) -> None: ...


class ReconnectPolicy:
    """Retry `gateway.ping()` with a fixed delay until the engine answers.

    max_attempts=0 retries forever. Returns False if attempts ran out or
    `stop_event` was set while waiting.
    """

    def __init__(self, delay_s: float = 5.0, max_attempts: int = 0):
        self.delay_s = max(0.0, float(delay_s))
        self.max_attempts = max(0, int(max_attempts))

    def wait(self, gateway: RuntimeGateway, stop_event: threading.Event | None = None) -> bool:
        stop_event = stop_event or threading.Event()
        attempt = 0
        while not stop_event.is_set():
            attempt += 1
            try:
                version = gateway.ping()
            except GatewayError as e:
                db.log_event("WARN", f"Container engine unreachable (attempt {attempt}): {e}")
                if self.max_attempts and attempt >= self.max_attempts:
                    db.log_event("ERROR", f"Giving up reconnect after {attempt} attempts")
                    return False
                if stop_event.wait(self.delay_s):
                    return False
                continue
            engine = f"engine {version}" if version else "engine"
            db.log_event("INFO", f"Container {engine} reachable again after {attempt} attempt(s)")
            return True
        return False
