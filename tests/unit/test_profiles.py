"""
Unit tests for profile and service selection.
"""
import pytest

from stackup.exceptions import DescriptorError
from stackup.MODELS.orchestration_config import StackDescriptor
from stackup.MODELS.service_definition import DependencyCondition, ServiceSpec
from stackup.PARSERS.compose_parser import ComposeParser


@pytest.fixture
def reference(reference_compose_path):
    return ComposeParser(context={}).parse(reference_compose_path)


def test_default_run_skips_profiled_services(reference):
    active = reference.select()
    assert list(active.services) == ["zookeeper", "kafka", "redis"]


def test_ui_profile_includes_admin_ui(reference):
    active = reference.select(profiles=["ui"])
    assert list(active.services) == ["zookeeper", "kafka", "redis", "kafka-ui"]


def test_unrelated_profile_does_not_include_admin_ui(reference):
    assert "kafka-ui" not in reference.select(profiles=["debug"]).services


def test_known_profiles(reference):
    assert reference.profiles == ["ui"]


def test_explicit_services_pull_in_dependencies(reference):
    active = reference.select(services=["kafka-ui"])
    assert set(active.services) == {"zookeeper", "kafka", "kafka-ui"}


def test_explicit_unknown_service(reference):
    with pytest.raises(DescriptorError, match="No such service: nope"):
        reference.select(services=["nope"])


def test_dependency_on_disabled_service_is_rejected():
    stack = StackDescriptor(services={
        "debugger": ServiceSpec(name="debugger", image="x", profiles=("debug",)),
        "app": ServiceSpec(name="app", image="x", depends_on={"debugger": DependencyCondition.SERVICE_HEALTHY}),
    })
    with pytest.raises(DescriptorError, match="not enabled"):
        stack.select()
    assert set(stack.select(profiles=["debug"]).services) == {"debugger", "app"}
