import asyncio
import json

import pytest
from typer.testing import CliRunner

import trainflow.persistence as persistence
from trainflow.cli import app
from trainflow.directory import StaticDirectory
from trainflow.entities import InMemoryEntityStore
from trainflow.graph.templates import training_approval_basic
from trainflow.notifications import InMemoryDispatcher
from trainflow.persistence import InMemoryWorkflowRepository
from trainflow.service import WorkflowService

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    config = tmp_path / "config.yaml"
    config.write_text("directory:\n  admin: [ada]\n  manager: [mia]\n")
    monkeypatch.setenv("TRAINFLOW_CONFIG", str(config))
    monkeypatch.delenv("TRAINFLOW_NOTIFICATIONS", raising=False)


def _setup_repo() -> InMemoryWorkflowRepository:
    repo = InMemoryWorkflowRepository()
    persistence._repository_instance = repo
    return repo


def _waiting_instance(repo: InMemoryWorkflowRepository) -> str:
    entities = InMemoryEntityStore()
    entities.put("training_requests", "tr-1", estimated_cost=5000)
    service = WorkflowService(
        repo, entities, InMemoryDispatcher(), directory=StaticDirectory({"manager": ["mia"]})
    )

    async def _start() -> str:
        definition = training_approval_basic().definition
        await service.definitions.save(definition)
        await service.definitions.activate(definition.id)
        return await service.apply_workflow_to_entity(definition.id, "training_requests", "tr-1")

    return asyncio.run(_start())


def test_definition_validate_reports_all_problems(tmp_path):
    good = tmp_path / "good.json"
    good.write_text(training_approval_basic().definition.to_json())
    bad = tmp_path / "bad.yaml"
    bad.write_text(
        """
name: Broken
category: training_request
nodes:
  - {id: a, type: action, action: {type: update_status}}
edges: []
"""
    )

    result = runner.invoke(app, ["definition", "validate", str(good)])
    assert result.exit_code == 0, result.stdout
    assert "valid" in result.stdout

    result = runner.invoke(app, ["definition", "validate", str(bad)])
    assert result.exit_code == 1
    assert "Workflow must have a start node" in result.stdout
    assert "Workflow must have at least one end node" in result.stdout

    missing = runner.invoke(app, ["definition", "validate", str(tmp_path / "nope.json")])
    assert missing.exit_code == 1
    assert "Specified path does not exist" in missing.stdout


def test_definition_templates_and_import(tmp_path):
    repo = _setup_repo()
    result = runner.invoke(app, ["definition", "templates"])
    assert result.exit_code == 0
    assert "Training Request Approval (Basic)" in result.stdout
    assert "Expense Approval" in result.stdout

    path = tmp_path / "wf.json"
    path.write_text(json.dumps(training_approval_basic().definition.model_dump(mode="json", by_alias=True)))
    result = runner.invoke(app, ["definition", "import", str(path), "--activate"])
    assert result.exit_code == 0, result.stdout
    assert "active" in result.stdout
    assert len(asyncio.run(repo.list_definitions())) == 1


def test_instance_list_and_show():
    repo = _setup_repo()
    instance_id = _waiting_instance(repo)

    result = runner.invoke(app, ["instance", "list", "--status", "running"])
    assert result.exit_code == 0
    assert instance_id in result.stdout
    assert "appr-0" in result.stdout

    result = runner.invoke(app, ["instance", "show", instance_id])
    assert result.exit_code == 0
    assert "task_created" in result.stdout
    assert "role=manager" in result.stdout

    missing = runner.invoke(app, ["instance", "show", "missing-id"])
    assert missing.exit_code == 1
    assert "Workflow instance missing-id not found" in missing.stdout


def test_task_list_by_role_and_user():
    repo = _setup_repo()
    instance_id = _waiting_instance(repo)

    result = runner.invoke(app, ["task", "list", "mia"])
    assert result.exit_code == 0
    assert instance_id in result.stdout

    result = runner.invoke(app, ["task", "list", "fred"])
    assert "No open tasks" in result.stdout


def test_retry_and_cancel_need_operator():
    repo = _setup_repo()
    instance_id = _waiting_instance(repo)

    result = runner.invoke(app, ["instance", "retry", instance_id, "--actor", "eve"])
    assert result.exit_code == 1
    assert "not allowed" in result.stdout

    result = runner.invoke(app, ["instance", "retry", instance_id, "--actor", "ada"])
    assert result.exit_code == 1
    assert "retry refused" in result.stdout

    result = runner.invoke(app, ["instance", "cancel", instance_id, "--actor", "mia"])
    assert result.exit_code == 0, result.stdout
    assert "cancelled" in result.stdout
    assert asyncio.run(repo.get_instance(instance_id)).status == "cancelled"
