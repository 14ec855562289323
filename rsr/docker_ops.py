from __future__ import annotations

import re
import secrets
from datetime import datetime
from typing import Any

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from . import db
from .gateway import CreateError, GatewayConnectionError, GatewayError, NotFoundError, RawContainer
from .observer import SERVICE_LABEL, VERSION_LABEL
from .runtime import DesiredState

SERVICE_NAME_RE = re.compile(r"^[a-z][a-z0-9\-]{0,62}$")
VERSION_RE = re.compile(r"^[a-z0-9][a-z0-9\-\._]{0,63}$")

# Engine timestamps carry up to nanoseconds; datetime only takes microseconds.
_FRACTION_RE = re.compile(r"\.(\d+)")


def _micros(m: re.Match) -> str:
    return "." + m.group(1)[:6].ljust(6, "0")


def validate_service_name(name: str) -> None:
    if not SERVICE_NAME_RE.match(name):
        raise ValueError(
            "Invalid service name. Use lowercase letters/numbers and hyphen, starting with a letter (max 63 chars)."
        )


def validate_version(version: str) -> None:
    if not VERSION_RE.match(version):
        raise ValueError("Invalid version string. Use letters/numbers and -._ (max 64 chars).")


def validate_desired_state(desired: DesiredState) -> None:
    validate_service_name(desired.service_name)
    validate_version(desired.version_label)
    if not desired.image:
        raise ValueError("An image reference is required.")


def parse_created(value: Any) -> float:
    """Container creation time as epoch seconds.

    The list endpoint reports an epoch int, inspect an RFC 3339 string.
    """
    if isinstance(value, (int, float)):
        return float(value)
    if not value:
        return 0.0
    text = _FRACTION_RE.sub(_micros, str(value), count=1).replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(text).timestamp()
    except ValueError:
        return 0.0


class DockerGateway:
    """Runtime gateway backed by the local Docker engine."""

    def __init__(
        self,
        network: str = "",
        timeout_s: int = 30,
        stop_timeout_s: int = 10,
        client: docker.DockerClient | None = None,
    ):
        self.network = network
        self.timeout_s = timeout_s
        self.stop_timeout_s = stop_timeout_s
        self._client_override = client
        self._client: docker.DockerClient | None = None

    def _docker(self) -> docker.DockerClient:
        if self._client_override is not None:
            return self._client_override
        if self._client is None:
            try:
                self._client = docker.from_env(timeout=self.timeout_s)
            except DockerException as e:
                raise GatewayConnectionError(str(e)) from e
        return self._client

    def _reset(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            except DockerException:
                pass
        self._client = None

    def ping(self) -> str | None:
        """Check the engine answers; returns its server version."""
        try:
            c = self._docker()
            c.ping()
            return c.version().get("Version")
        except (DockerException, requests.exceptions.RequestException) as e:
            self._reset()
            raise GatewayConnectionError(str(e)) from e

    def ensure_network(self) -> None:
        if not self.network:
            return
        c = self._docker()
        try:
            c.networks.get(self.network)
        except NotFound:
            c.networks.create(self.network, driver="bridge")
            db.log_event("INFO", f"Created docker network '{self.network}'.")

    def list_containers(self, label_filter: dict[str, str]) -> list[RawContainer]:
        filters: dict[str, Any] = {"label": [f"{k}={v}" for k, v in label_filter.items()]}
        try:
            containers = self._docker().containers.list(all=True, filters=filters, ignore_removed=True)
        except (DockerException, requests.exceptions.RequestException) as e:
            self._reset()
            raise GatewayConnectionError(str(e)) from e
        return [
            RawContainer(
                id=x.id,
                labels=dict(x.labels or {}),
                status=x.status,
                created_at=parse_created(x.attrs.get("Created")),
            )
            for x in containers
        ]

    def _create(self, image: str, kwargs: dict[str, Any]):
        c = self._docker()
        try:
            return c.containers.create(image, **kwargs)
        except ImageNotFound:
            c.images.pull(image)
            return c.containers.create(image, **kwargs)

    def create_container(self, image: str, labels: dict[str, str]) -> str:
        """Create and start a labeled container; returns its id.

        The labels are what lets the reconciler find it again after a restart.
        A container whose start fails is removed again, so it never lingers
        in `created`.
        """
        service = labels.get(SERVICE_LABEL, "svc")
        version = labels.get(VERSION_LABEL, "dev")
        name = f"rsr-{service}-{version}-{secrets.token_hex(3)}"
        kwargs: dict[str, Any] = {
            "name": name,
            "labels": dict(labels),
            # Replacement is our job; keep Docker's restart policy out of the way.
            "restart_policy": {"Name": "no"},
        }
        if self.network:
            kwargs["network"] = self.network
        try:
            self.ensure_network()
            container = self._create(image, kwargs)
        except ImageNotFound as e:
            raise CreateError(f"Image not found: {image}") from e
        except APIError as e:
            raise CreateError(str(e)) from e
        except (DockerException, requests.exceptions.RequestException) as e:
            raise GatewayError(str(e)) from e

        try:
            container.start()
        except (DockerException, requests.exceptions.RequestException) as e:
            self._discard(container)
            raise CreateError(f"Container {name} failed to start: {e}") from e
        return container.id

    def _discard(self, container) -> None:
        try:
            container.remove(force=True)
        except (DockerException, requests.exceptions.RequestException) as e:
            db.log_event("WARN", f"Could not remove unstarted container {container.id[:12]}: {e}")

    def stop_container(self, container_id: str) -> None:
        try:
            self._docker().containers.get(container_id).stop(timeout=self.stop_timeout_s)
        except NotFound as e:
            raise NotFoundError(container_id) from e
        except (DockerException, requests.exceptions.RequestException) as e:
            raise GatewayError(str(e)) from e

    def remove_container(self, container_id: str, force: bool = True) -> None:
        try:
            self._docker().containers.get(container_id).remove(force=force)
        except NotFound as e:
            raise NotFoundError(container_id) from e
        except (DockerException, requests.exceptions.RequestException) as e:
            raise GatewayError(str(e)) from e
