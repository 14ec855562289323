from datetime import datetime, timezone
from types import SimpleNamespace
from unittest import mock

import pytest
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from rsr import db
from rsr.docker_ops import DockerGateway, parse_created, validate_desired_state, validate_service_name, validate_version
from rsr.gateway import CreateError, GatewayConnectionError, GatewayError, NotFoundError
from rsr.observer import SERVICE_LABEL, VERSION_LABEL
from rsr.runtime import DesiredState

JAN1 = datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp()


@pytest.mark.parametrize(
    "value,expected",
    [
        ("2024-01-01T00:00:00Z", JAN1),
        ("2024-01-01T00:00:00.123456789Z", JAN1 + 0.123456),
        ("2024-01-01T00:00:00.5Z", JAN1 + 0.5),
        (1700000000, 1700000000.0),
        (None, 0.0),
        ("not a date", 0.0),
    ],
)
def test_parse_created(value, expected):
    assert parse_created(value) == pytest.approx(expected)


def test_validation():
    validate_service_name("web-api")
    validate_version("v1.2.3")
    with pytest.raises(ValueError):
        validate_service_name("Web")
    with pytest.raises(ValueError):
        validate_version("-v1")
    with pytest.raises(ValueError):
        validate_desired_state(DesiredState("web", "", "v1", 1))


def _container(cid="abc", status="running", labels=None, created="2024-01-01T00:00:00Z"):
    return SimpleNamespace(
        id=cid,
        status=status,
        labels=labels if labels is not None else {SERVICE_LABEL: "web", VERSION_LABEL: "v1"},
        attrs={"Created": created},
    )


def test_list_containers_maps_and_filters():
    client = mock.MagicMock()
    client.containers.list.return_value = [_container(), _container("def", "exited", labels=None)]
    gw = DockerGateway(client=client)

    raw = gw.list_containers({SERVICE_LABEL: "web"})

    client.containers.list.assert_called_once_with(all=True, filters={"label": ["rsr.service=web"]}, ignore_removed=True)
    assert [(c.id, c.status) for c in raw] == [("abc", "running"), ("def", "exited")]
    assert raw[0].labels[VERSION_LABEL] == "v1"
    assert raw[0].created_at == pytest.approx(JAN1)


@pytest.mark.parametrize("exc", [DockerException("socket"), requests.exceptions.ConnectionError("refused")])
def test_list_containers_unreachable(exc):
    client = mock.MagicMock()
    client.containers.list.side_effect = exc
    with pytest.raises(GatewayConnectionError):
        DockerGateway(client=client).list_containers({SERVICE_LABEL: "web"})


def test_ping_unreachable():
    client = mock.MagicMock()
    client.ping.side_effect = requests.exceptions.ReadTimeout("slow")
    with pytest.raises(GatewayConnectionError):
        DockerGateway(client=client).ping()


def test_ping_returns_engine_version():
    client = mock.MagicMock()
    client.version.return_value = {"Version": "24.0.7", "ApiVersion": "1.43"}
    assert DockerGateway(client=client).ping() == "24.0.7"
    client.ping.assert_called_once_with()


def test_create_container_creates_then_starts_with_labels():
    client = mock.MagicMock()
    container = mock.MagicMock(id="new123")
    client.containers.create.return_value = container
    gw = DockerGateway(client=client)
    labels = {SERVICE_LABEL: "web", VERSION_LABEL: "v2"}

    assert gw.create_container("web:v2", labels) == "new123"

    args, kwargs = client.containers.create.call_args
    assert args == ("web:v2",)
    assert kwargs["labels"] == labels
    assert kwargs["restart_policy"] == {"Name": "no"}
    assert kwargs["name"].startswith("rsr-web-v2-")
    assert "network" not in kwargs
    container.start.assert_called_once_with()
    container.remove.assert_not_called()
    client.containers.run.assert_not_called()
    client.networks.get.assert_not_called()


def test_create_container_creates_missing_network():
    client = mock.MagicMock()
    client.networks.get.side_effect = NotFound("no network")
    client.containers.create.return_value = mock.MagicMock(id="new123")
    gw = DockerGateway(network="rsr", client=client)

    gw.create_container("web:v1", {SERVICE_LABEL: "web", VERSION_LABEL: "v1"})

    client.networks.create.assert_called_once_with("rsr", driver="bridge")
    assert client.containers.create.call_args.kwargs["network"] == "rsr"


def test_create_container_pulls_missing_image():
    client = mock.MagicMock()
    client.containers.create.side_effect = [ImageNotFound("missing"), mock.MagicMock(id="new123")]

    assert DockerGateway(client=client).create_container("web:v1", {SERVICE_LABEL: "web"}) == "new123"
    client.images.pull.assert_called_once_with("web:v1")


@pytest.mark.parametrize("exc", [APIError("port is already allocated"), requests.exceptions.ReadTimeout("slow")])
def test_create_container_removes_container_that_fails_to_start(exc):
    client = mock.MagicMock()
    container = mock.MagicMock(id="new123")
    container.start.side_effect = exc
    client.containers.create.return_value = container

    with pytest.raises(CreateError):
        DockerGateway(client=client).create_container("web:v1", {SERVICE_LABEL: "web"})
    container.remove.assert_called_once_with(force=True)


def test_create_container_start_failure_with_failed_cleanup_is_logged():
    client = mock.MagicMock()
    container = mock.MagicMock(id="new123")
    container.start.side_effect = APIError("bad entrypoint")
    container.remove.side_effect = APIError("device busy")
    client.containers.create.return_value = container

    with pytest.raises(CreateError):
        DockerGateway(client=client).create_container("web:v1", {SERVICE_LABEL: "web"})
    assert "Could not remove unstarted container new123" in db.latest_events(1)[0]["message"]


@pytest.mark.parametrize(
    "exc,expected",
    [
        (ImageNotFound("missing"), CreateError),
        (APIError("no space"), CreateError),
        (requests.exceptions.ReadTimeout("slow"), GatewayError),
    ],
)
def test_create_container_errors(exc, expected):
    client = mock.MagicMock()
    client.containers.create.side_effect = exc
    with pytest.raises(expected):
        DockerGateway(client=client).create_container("web:v1", {SERVICE_LABEL: "web"})


def test_stop_and_remove():
    client = mock.MagicMock()
    container = client.containers.get.return_value
    gw = DockerGateway(stop_timeout_s=7, client=client)

    gw.stop_container("abc")
    container.stop.assert_called_once_with(timeout=7)

    gw.remove_container("abc")
    container.remove.assert_called_once_with(force=True)


@pytest.mark.parametrize("op", ["stop_container", "remove_container"])
def test_stop_and_remove_not_found(op):
    client = mock.MagicMock()
    client.containers.get.side_effect = NotFound("gone")
    with pytest.raises(NotFoundError):
        getattr(DockerGateway(client=client), op)("abc")


@pytest.mark.parametrize("op", ["stop_container", "remove_container"])
def test_stop_and_remove_other_errors(op):
    client = mock.MagicMock()
    client.containers.get.return_value.stop.side_effect = APIError("conflict")
    client.containers.get.return_value.remove.side_effect = APIError("conflict")
    with pytest.raises(GatewayError) as ei:
        getattr(DockerGateway(client=client), op)("abc")
    assert not isinstance(ei.value, NotFoundError)
