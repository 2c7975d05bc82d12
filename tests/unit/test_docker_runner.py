"""
Unit tests for the Docker runner, with the Docker client mocked out.
"""
from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from stackup.exceptions import ImagePullError, ServiceStartError
from stackup.MODELS.service_definition import HealthCheck, ServiceSpec
from stackup.PARSERS.compose_parser import ComposeParser
from stackup.RUNNERS.docker_runner import PROJECT_LABEL, SERVICE_LABEL, DockerRuntime


@pytest.fixture
def reference(reference_compose_path):
    return ComposeParser(context={}).parse(reference_compose_path, project="posthog")


@pytest.fixture
def client():
    client = MagicMock()
    client.containers.get.side_effect = NotFound("no such container")
    return client


def test_start_creates_container_on_project_network(reference, client):
    runtime = DockerRuntime("posthog", client=client)
    runner = runtime.runner(reference.services["kafka"])
    network = client.networks.get.return_value
    container = client.containers.create.return_value

    runner.start()

    client.images.get.assert_called_once_with("ghcr.io/posthog/kafka-container:v2.8.2")
    client.images.pull.assert_not_called()
    args, kwargs = client.containers.create.call_args
    assert args == ("ghcr.io/posthog/kafka-container:v2.8.2",)
    assert kwargs["name"] == "posthog-kafka-1"
    assert kwargs["ports"] == {"9092/tcp": 9092}
    assert kwargs["environment"]["KAFKA_CFG_ADVERTISED_LISTENERS"] == "PLAINTEXT://kafka:9092"
    assert kwargs["labels"][PROJECT_LABEL] == "posthog"
    assert kwargs["labels"][SERVICE_LABEL] == "kafka"
    assert kwargs["command"] is None
    client.networks.get.assert_called_with("posthog_default")
    network.connect.assert_called_once_with(container, aliases=["kafka"])
    container.start.assert_called_once_with()


def test_start_passes_command(reference, client):
    runner = DockerRuntime("posthog", client=client).runner(reference.services["redis"])
    runner.start()
    _, kwargs = client.containers.create.call_args
    assert kwargs["command"] == ["redis-server", "--maxmemory-policy", "allkeys-lru", "--maxmemory", "200mb"]


def test_network_is_created_when_missing(reference, client):
    client.networks.get.side_effect = NotFound("no such network")
    DockerRuntime("posthog", client=client).runner(reference.services["zookeeper"]).start()
    client.networks.create.assert_called_once_with(
        "posthog_default", driver="bridge", labels={PROJECT_LABEL: "posthog"}
    )


def test_missing_image_is_pulled(reference, client):
    client.images.get.side_effect = ImageNotFound("missing")
    DockerRuntime("posthog", client=client).runner(reference.services["zookeeper"]).start()
    client.images.pull.assert_called_once_with("zookeeper:3.7.0")


def test_pull_failure_raises_image_pull_error(reference, client):
    client.images.get.side_effect = ImageNotFound("missing")
    client.images.pull.side_effect = APIError("pull access denied")
    runner = DockerRuntime("posthog", client=client).runner(reference.services["zookeeper"])

    with pytest.raises(ImagePullError) as exc:
        runner.start()
    assert exc.value.image == "zookeeper:3.7.0"
    client.containers.create.assert_not_called()


def test_create_failure_raises_start_error(reference, client):
    client.containers.create.side_effect = APIError("port is already allocated")
    runner = DockerRuntime("posthog", client=client).runner(reference.services["redis"])
    with pytest.raises(ServiceStartError, match="port is already allocated"):
        runner.start()


def test_stale_container_is_replaced(reference, client):
    stale = MagicMock()
    client.containers.get.side_effect = None
    client.containers.get.return_value = stale
    DockerRuntime("posthog", client=client).runner(reference.services["redis"]).start()
    stale.remove.assert_called_once_with(force=True)


def test_status_and_exit_code(reference, client):
    container = MagicMock(status="exited", attrs={"State": {"ExitCode": 137}})
    client.containers.get.side_effect = None
    client.containers.get.return_value = container
    runner = DockerRuntime("posthog", client=client).runner(reference.services["redis"])

    assert not runner.is_running()
    assert runner.exit_code() == 137
    assert runner.status() == "exited(137)"

    container.status = "running"
    assert runner.is_running()
    assert runner.exit_code() is None


def test_missing_container_is_stopped(reference, client):
    runner = DockerRuntime("posthog", client=client).runner(reference.services["redis"])
    assert runner.status() == "stopped"
    runner.stop()


def test_health_check_runs_inside_container(reference, client):
    container = MagicMock(status="running")
    container.exec_run.return_value = (0, b"PONG\n")
    client.containers.get.side_effect = None
    client.containers.get.return_value = container
    spec = reference.services["redis"]
    runner = DockerRuntime("posthog", client=client).runner(spec)

    result = runner.run_check(spec.healthcheck, timeout=1.0)

    container.exec_run.assert_called_once_with(["redis-cli", "ping"])
    assert result.success
    assert result.output == "PONG\n"


def test_shell_health_check_uses_sh(reference, client):
    container = MagicMock(status="running")
    container.exec_run.return_value = (1, b"connection refused")
    client.containers.get.side_effect = None
    client.containers.get.return_value = container
    spec = reference.services["kafka"]

    result = DockerRuntime("posthog", client=client).runner(spec).run_check(spec.healthcheck, timeout=1.0)

    command = container.exec_run.call_args[0][0]
    assert command[:2] == ["/bin/sh", "-c"]
    assert command[2].startswith("kafka-cluster.sh cluster-id")
    assert not result.success
    assert result.exit_code == 1


def test_stop_removes_container(reference, client):
    container = MagicMock(status="running")
    client.containers.get.side_effect = None
    client.containers.get.return_value = container
    DockerRuntime("posthog", client=client).runner(reference.services["redis"]).stop(timeout=5)
    container.stop.assert_called_once_with(timeout=5)
    container.remove.assert_called_once_with(force=True)


def test_teardown_removes_network(client):
    runtime = DockerRuntime("posthog", client=client)
    runtime.teardown()
    client.networks.get.assert_called_once_with("posthog_default")
    client.networks.get.return_value.remove.assert_called_once_with()


def test_env_file_is_merged_under_environment(tmp_path, client, monkeypatch):
    monkeypatch.setenv("STACKUP_HOST_ONLY", "1")
    (tmp_path / "svc.env").write_text("FROM_FILE=1\nX=file\n")
    spec = ServiceSpec(name="app", image="app:latest", env_file=("svc.env",), environment={"X": "y"})

    DockerRuntime("demo", client=client, base_dir=str(tmp_path)).runner(spec).start()

    _, kwargs = client.containers.create.call_args
    assert kwargs["environment"] == {"FROM_FILE": "1", "X": "y"}


def test_missing_env_file_fails_start(tmp_path, client):
    spec = ServiceSpec(name="app", image="app:latest", env_file=("missing.env",))
    runner = DockerRuntime("demo", client=client, base_dir=str(tmp_path)).runner(spec)
    with pytest.raises(ServiceStartError, match="missing.env"):
        runner.start()
    client.containers.create.assert_not_called()


def test_health_check_connection_error_is_a_failed_check(client):
    container = MagicMock(status="running")
    container.exec_run.side_effect = DockerException("connection aborted")
    client.containers.get.side_effect = None
    client.containers.get.return_value = container
    check = HealthCheck(test=("CMD", "true"))
    runner = DockerRuntime("demo", client=client).runner(ServiceSpec(name="app", image="app", healthcheck=check))

    result = runner.run_check(check, timeout=1.0)

    assert not result.success
    assert "connection aborted" in result.output
