"""Root test configuration."""
import logging
import os
import threading
from typing import List, Optional

import pytest
import structlog

from stackup.CONFIG.settings import Settings
from stackup.RUNNERS.base_runner import CheckResult, Runtime, ServiceRunner

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


class FakeRunner(ServiceRunner):
    """In-memory runner recording what the orchestrator asks of it."""

    def __init__(self, spec, runtime):
        super().__init__(spec)
        self.runtime = runtime
        self.running = False
        self.code: Optional[int] = None
        self.start_calls = 0
        self.stop_calls = 0
        self.check_calls = 0

    def start(self):
        with self.runtime.lock:
            self.runtime.started.append(self.name)
        self.start_calls += 1
        error = self.runtime.start_errors.get(self.name)
        if error is not None:
            raise error
        self.running = True
        self.code = None

    def stop(self, timeout=10.0):
        self.stop_calls += 1
        with self.runtime.lock:
            self.runtime.stopped.append(self.name)
        if self.running:
            self.running = False
            self.code = 0

    def exit(self, code: int):
        self.running = False
        self.code = code

    def is_running(self):
        return self.running

    def exit_code(self):
        return None if self.running else self.code

    def run_check(self, check, timeout):
        self.check_calls += 1
        behaviour = self.runtime.checks.get(self.name, True)
        ok = behaviour(self.check_calls) if callable(behaviour) else behaviour
        return CheckResult(success=bool(ok), output="ok" if ok else "check failed", exit_code=0 if ok else 1)


class FakeRuntime(Runtime):
    """Builds FakeRunners and remembers them by service name."""

    def __init__(self):
        self.lock = threading.Lock()
        self.runners = {}
        self.started: List[str] = []
        self.stopped: List[str] = []
        self.start_errors = {}
        self.checks = {}
        self.torn_down = False

    def runner(self, spec):
        runner = FakeRunner(spec, self)
        self.runners[spec.name] = runner
        return runner

    def teardown(self):
        self.torn_down = True


@pytest.fixture
def fake_runtime():
    return FakeRuntime()


@pytest.fixture
def fast_settings():
    return Settings(
        poll_interval=0.02,
        restart_delay=0.0,
        restart_max_delay=0.0,
        restart_reset_after=60.0,
        stop_timeout=2.0,
    )


@pytest.fixture
def reference_compose_path():
    return os.path.join(FIXTURES, "docker-compose.yml")


@pytest.fixture
def reference_compose():
    with open(os.path.join(FIXTURES, "docker-compose.yml")) as f:
        return f.read()
