
import pytest
import yaml
from click.testing import CliRunner

from stackup.CLI import main as cli_main
from stackup.CLI.main import cli


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli_main, "configure_logging", lambda *args, **kwargs: None)


def test_cli_help():
    runner = CliRunner()
    result = runner.invoke(cli, ['--help'], obj={})
    assert result.exit_code == 0
    assert 'Start services' in result.output


def test_cli_up_no_file():
    runner = CliRunner()
    result = runner.invoke(cli, ['-f', 'non_existent.yml', 'up'], obj={})
    assert result.exit_code == 1
    assert 'non_existent.yml not found.' in result.output


def test_config_services_skips_profiled(reference_compose_path):
    runner = CliRunner()
    result = runner.invoke(cli, ['-f', reference_compose_path, 'config', '--services'], obj={})
    assert result.exit_code == 0, result.output
    assert result.output.split() == ["zookeeper", "redis", "kafka"]


def test_config_services_with_profile(reference_compose_path):
    runner = CliRunner()
    result = runner.invoke(cli, ['-f', reference_compose_path, 'config', '--services', '--profile', 'ui'], obj={})
    assert result.exit_code == 0, result.output
    assert result.output.split() == ["zookeeper", "redis", "kafka", "kafka-ui"]


def test_config_prints_normalized_descriptor(reference_compose_path):
    runner = CliRunner()
    result = runner.invoke(cli, ['-f', reference_compose_path, '-p', 'posthog', 'config'], obj={})
    assert result.exit_code == 0, result.output

    data = yaml.safe_load(result.output)
    assert data["name"] == "posthog"
    assert list(data["services"]) == ["zookeeper", "redis", "kafka"]
    kafka = data["services"]["kafka"]
    assert kafka["ports"] == ["9092:9092"]
    assert kafka["restart"] == "on-failure"
    assert kafka["depends_on"] == {"zookeeper": "service_healthy"}
    assert kafka["healthcheck"]["retries"] == 10


def test_cycle_is_reported(tmp_path):
    compose_file = tmp_path / "docker-compose.yml"
    compose_file.write_text(yaml.safe_dump({"services": {
        "a": {"image": "x", "depends_on": ["b"]},
        "b": {"image": "x", "depends_on": ["a"]},
    }}))
    runner = CliRunner()
    for command in (['config'], ['up', '--detach']):
        result = runner.invoke(cli, ['-f', str(compose_file), '--runtime', 'process'] + command, obj={})
        assert result.exit_code == 1
        assert "Circular dependency detected" in result.output


def test_up_detach_reports_failures(tmp_path):
    compose_file = tmp_path / "docker-compose.yml"
    compose_file.write_text(yaml.safe_dump({"services": {"zookeeper": {"image": "zookeeper:3.7.0"}}}))
    runner = CliRunner()
    result = runner.invoke(cli, ['-f', str(compose_file), '--runtime', 'process', 'up', '-d'], obj={})
    assert result.exit_code == 1
    assert "zookeeper" in result.output


def test_ps_process_runtime(reference_compose_path):
    runner = CliRunner()
    result = runner.invoke(cli, ['-f', reference_compose_path, '--runtime', 'process', 'ps'], obj={})
    assert result.exit_code == 0, result.output
    assert "zookeeper" in result.output
    assert "stopped" in result.output


def test_ctrl_c_during_up_stops_started_services(tmp_path, monkeypatch):
    compose_file = tmp_path / "docker-compose.yml"
    compose_file.write_text(yaml.safe_dump({"services": {"app": {"image": "x", "command": "sleep 60"}}}))
    calls = []

    def interrupted_up(self, profiles=(), services=()):
        self.order = ["app"]
        calls.append("up")
        raise KeyboardInterrupt

    monkeypatch.setattr(cli_main.StackOrchestrator, "up", interrupted_up)
    monkeypatch.setattr(cli_main.StackOrchestrator, "down", lambda self: calls.append("down"))

    for command in (['up'], ['up', '-d']):
        calls.clear()
        result = CliRunner().invoke(cli, ['-f', str(compose_file), '--runtime', 'process'] + command, obj={})
        assert result.exit_code == 0, result.output
        assert calls == ["up", "down"]
        assert "Stopping services" in result.output
