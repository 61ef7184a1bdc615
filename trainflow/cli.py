"""Command line interface for inspecting and operating workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Optional

import typer
import yaml
from pydantic import ValidationError

from trainflow.config import load_config
from trainflow.constants import SYSTEM_ACTOR
from trainflow.contracts import WorkflowDefinition
from trainflow.entities import InMemoryEntityStore
from trainflow.errors import AuthorizationError, WorkflowError
from trainflow.graph import list_templates, validate
from trainflow.notifications import get_dispatcher
from trainflow.persistence import get_repository
from trainflow.service import WorkflowService

app = typer.Typer(help="CLI for trainflow workflows")

# Command groups
definition_app = typer.Typer(help="Commands for workflow definitions")
instance_app = typer.Typer(help="Commands for workflow instances")
task_app = typer.Typer(help="Commands for approval tasks")

app.add_typer(definition_app, name="definition")
app.add_typer(instance_app, name="instance")
app.add_typer(task_app, name="task")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")) -> None:
    """trainflow CLI entry point."""
    level = "DEBUG" if verbose else load_config().log_level
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _service() -> WorkflowService:
    config = load_config()
    return WorkflowService(
        repository=get_repository(),
        entity_store=InMemoryEntityStore(),
        dispatcher=get_dispatcher(config=config),
        config=config,
    )


def _run(coro: Awaitable[Any]) -> Any:
    """Run ``coro``, reporting domain and authorization errors as exit code 1."""
    try:
        return asyncio.run(coro)
    except (WorkflowError, AuthorizationError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _load_definition(path: Path) -> WorkflowDefinition:
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    text = path.read_text()
    data = yaml.safe_load(text) if path.suffix in (".yaml", ".yml") else json.loads(text)
    try:
        return WorkflowDefinition.model_validate(data)
    except ValidationError as exc:
        typer.secho(f"Invalid node configuration:\n{exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@definition_app.command("validate")
def definition_validate(file: Path) -> None:
    """
    Check a definition file (JSON or YAML) for structural problems.

    Every violation is reported, not only the first one.

    Example:
        trainflow definition validate training_request.json
    """
    definition = _load_definition(file)
    result = validate(definition)
    if result.ok:
        typer.echo(f"{definition.name}: valid ({len(definition.nodes)} nodes)")
        return
    typer.secho(f"{definition.name}: {len(result.errors)} problem(s)", fg=typer.colors.RED)
    for error in result.errors:
        typer.echo(f"- {error}")
    raise typer.Exit(code=1)


@definition_app.command("import")
def definition_import(
    file: Path,
    activate: bool = typer.Option(False, help="Activate the definition after storing it"),
) -> None:
    """Store a definition file in the configured repository."""
    definition = _load_definition(file)
    service = _service()

    async def _import() -> WorkflowDefinition:
        stored = await service.definitions.save(definition.model_copy(update={"status": "draft"}))
        if activate:
            stored = await service.definitions.activate(stored.id, stored.version)
        return stored

    stored = _run(_import())
    typer.echo(f"{stored.id}\tv{stored.version}\t{stored.status}")


@definition_app.command("list")
def definition_list(category: Optional[str] = None) -> None:
    """List stored definitions (latest version of each)."""
    definitions = _run(_service().definitions.list(category))
    if not definitions:
        typer.echo("No definitions found")
        return
    for d in definitions:
        typer.echo(f"{d.id}\t{d.name}\t{d.category}\tv{d.version}\t{d.status}")


@definition_app.command("templates")
def definition_templates() -> None:
    """List the built-in workflow templates."""
    for template in list_templates():
        typer.echo(f"{template.id}\t{template.name}\t{template.category}")


@instance_app.command("list")
def instance_list(
    status: Optional[str] = typer.Option(None, help="Only instances with this status"),
) -> None:
    """
    List workflow instances, newest first.

    Example:
        trainflow instance list --status failed
    """
    instances = _run(_service().list_instances(status))
    if not instances:
        typer.echo("No instances found")
        return
    for inst in instances:
        typer.echo(
            f"{inst.id}\t{inst.status}\t{inst.entity_type}:{inst.entity_id}\t{inst.current_node_id}"
        )


@instance_app.command("show")
def instance_show(instance_id: str) -> None:
    """
    Show an instance with its timeline and tasks.

    Essential for diagnosing failed instances before retrying them.
    """
    service = _service()

    async def _collect():
        instance = await service.get_instance(instance_id)
        return instance, await service.list_events(instance_id), await service.list_tasks(instance_id)

    instance, events, tasks = _run(_collect())
    typer.echo(f"Instance {instance.id}: {instance.status}")
    typer.echo(
        f"Workflow {instance.workflow_id} v{instance.definition_version} "
        f"on {instance.entity_type}:{instance.entity_id}"
    )
    typer.echo(f"Current node: {instance.current_node_id}  Retries: {instance.retry_count}")
    if instance.last_error:
        typer.secho(f"Last error: {instance.last_error}", fg=typer.colors.RED)
    typer.echo("Timeline:")
    for event in events:
        typer.echo(
            f"  {event.sequence:>3} {event.created_at:%Y-%m-%d %H:%M:%S} "
            f"{event.event_type} [{event.actor}]" + (f" {event.message}" if event.message else "")
        )
    if tasks:
        typer.echo("Tasks:")
        for task in tasks:
            typer.echo(
                f"  {task.id} {task.node_id}: {task.status} "
                f"(role={task.assigned_role}, user={task.assigned_user})"
            )


@instance_app.command("retry")
def instance_retry(
    instance_id: str,
    node: Optional[str] = typer.Option(None, help="Resume at this node instead"),
    actor: str = typer.Option(SYSTEM_ACTOR, help="Operator performing the retry"),
) -> None:
    """Re-arm a failed or stalled instance and advance it."""
    instance = _run(_service().retry(instance_id, node, actor))
    typer.echo(f"Instance {instance.id}: {instance.status} at {instance.current_node_id}")


@instance_app.command("cancel")
def instance_cancel(
    instance_id: str,
    actor: str = typer.Option(SYSTEM_ACTOR, help="Operator performing the cancellation"),
    reason: Optional[str] = None,
) -> None:
    """Cancel a non-terminal instance."""
    instance = _run(_service().cancel(instance_id, actor, reason))
    typer.echo(f"Instance {instance.id}: {instance.status}")


@task_app.command("list")
def task_list(assignee: str) -> None:
    """List pending tasks for a user or role, newest first."""
    tasks = _run(_service().list_open_tasks_for(assignee))
    if not tasks:
        typer.echo("No open tasks")
        return
    for task in tasks:
        due = f"\tdue {task.due_at:%Y-%m-%d %H:%M}" if task.due_at else ""
        typer.echo(f"{task.id}\t{task.instance_id}\t{task.node_id}{due}")


if __name__ == "__main__":
    app()
