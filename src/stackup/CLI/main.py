# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Command Line Interface for stackup.
"""
import os

import click
import yaml

from ..CONFIG.logging import configure_logging
from ..CONFIG.settings import get_settings
from ..exceptions import StackupError
from ..MANAGERS.service_orchestrator import StackOrchestrator
from ..PARSERS.compose_parser import ComposeParser
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..RUNNERS.docker_runner import DockerRuntime
from ..RUNNERS.process_runner import ProcessRuntime


def _load(ctx):
    """
    Parses the descriptor named on the command line, once per invocation.
    """
    if "descriptor" not in ctx.obj:
        path = ctx.obj["file"]
        if not os.path.exists(path):
            raise click.ClickException(f"{path} not found.")
        try:
            ctx.obj["descriptor"] = ComposeParser().parse(path, project=ctx.obj["project"])
        except StackupError as e:
            raise click.ClickException(str(e))
    return ctx.obj["descriptor"]


def _orchestrator(ctx) -> StackOrchestrator:
    descriptor = _load(ctx)
    base_dir = os.path.dirname(os.path.abspath(ctx.obj["file"]))
    if ctx.obj["runtime"] == "process":
        runtime = ProcessRuntime(base_dir=base_dir)
    else:
        runtime = DockerRuntime(descriptor.project, base_dir=base_dir)
    return StackOrchestrator(descriptor, runtime, settings=ctx.obj["settings"])


@click.group()
@click.option('--file', '-f', default=None, help='Descriptor path [default: docker-compose.yml]')
@click.option('--project-name', '-p', default=None, help='Project name [default: descriptor directory]')
@click.option('--runtime', type=click.Choice(['docker', 'process']), default=None,
              help='Run services as containers or host processes')
@click.option('--log-level', default=None, help='Log level [default: INFO]')
@click.option('--json-logs', is_flag=True, help='Emit JSON log lines')
@click.pass_context
def cli(ctx, file, project_name, runtime, log_level, json_logs):
    """
    stackup - compose-style service launcher.

    Starts services in dependency order, waits for their health checks and
    restarts them according to their restart policy.
    """
    ctx.ensure_object(dict)
    settings = get_settings()
    configure_logging(log_level or settings.log_level, json_logs or settings.json_logs)
    ctx.obj['settings'] = settings
    ctx.obj['file'] = file or settings.file
    ctx.obj['project'] = project_name or settings.project_name
    ctx.obj['runtime'] = runtime or settings.runtime


@cli.command()
@click.argument('services', nargs=-1)
@click.option('--profile', 'profiles', multiple=True, help='Enable services carrying this profile')
@click.option('--detach', '-d', is_flag=True, help='Return once services are up')
@click.pass_context
def up(ctx, services, profiles, detach):
    """Start services defined in the descriptor."""
    orchestrator = _orchestrator(ctx)
    profiles = list(profiles) or ctx.obj['settings'].profile_list
    detached = False
    try:
        result = orchestrator.up(profiles=profiles, services=services)

        for name in result.order:
            click.echo(f"{name:20} {result.states[name].status.value}")
        for name, reason in result.failures.items():
            click.echo(f"{name}: {reason}", err=True)

        if detach:
            detached = True
            if not result.ok:
                ctx.exit(1)
            return

        click.echo("Running... Press Ctrl+C to stop.")
        orchestrator.wait()
    except KeyboardInterrupt:
        click.echo("\nStopping services...")
    except StackupError as e:
        raise click.ClickException(str(e))
    finally:
        if orchestrator.order and not detached:
            orchestrator.down()


@cli.command()
@click.pass_context
def down(ctx):
    """Stop and remove the project's services."""
    orchestrator = _orchestrator(ctx)
    try:
        orchestrator.down()
    except StackupError as e:
        raise click.ClickException(str(e))
    click.echo("Services stopped.")


@cli.command()
@click.pass_context
def ps(ctx):
    """List service status."""
    orchestrator = _orchestrator(ctx)
    try:
        status = orchestrator.ps()
    except StackupError as e:
        raise click.ClickException(str(e))
    click.echo(f"{'SERVICE':20} {'STATUS':10}")
    click.echo("-" * 31)
    for name, state in status.items():
        click.echo(f"{name:20} {state:10}")


@cli.command()
@click.option('--services', 'names_only', is_flag=True, help='Only print service names in start order')
@click.option('--profile', 'profiles', multiple=True, help='Enable services carrying this profile')
@click.pass_context
def config(ctx, names_only, profiles):
    """Validate the descriptor and print it normalized."""
    descriptor = _load(ctx)
    profiles = list(profiles) or ctx.obj['settings'].profile_list
    try:
        DependencyResolver().resolve_order(descriptor)
        active = descriptor.select(profiles=profiles)
        order = DependencyResolver().resolve_order(active)
    except StackupError as e:
        raise click.ClickException(str(e))

    if names_only:
        for name in order:
            click.echo(name)
        return

    services = {}
    for name in order:
        svc = active.services[name].model_dump(mode="json", exclude_defaults=True, exclude={"name"})
        if "ports" in svc:
            svc["ports"] = [str(p) for p in active.services[name].ports]
        services[name] = svc
    click.echo(yaml.safe_dump({"name": active.project, "services": services}, sort_keys=False))


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
