import pytest

from trainflow.errors import AuthorizationError, Forbidden, WorkflowError
from trainflow.security import PolicyEngine


@pytest.mark.asyncio
async def test_operator_roles_may_retry(directory):
    policy = PolicyEngine(directory)
    assert await policy.evaluate("ada", "instance.retry")
    assert await policy.evaluate("mia", "instance.retry")
    assert not await policy.evaluate("eve", "instance.retry")
    assert await policy.evaluate("system", "instance.retry")


@pytest.mark.asyncio
async def test_unlisted_actions_are_open(directory):
    assert await PolicyEngine(directory).evaluate("eve", "instance.show")


@pytest.mark.asyncio
async def test_enforce_raises_forbidden_outside_domain_errors(directory):
    policy = PolicyEngine(directory, rules={"definition.activate": ["admin"]})
    await policy.enforce("ada", "definition.activate")
    with pytest.raises(Forbidden) as exc_info:
        await policy.enforce("mia", "definition.activate")
    assert isinstance(exc_info.value, AuthorizationError)
    assert not isinstance(exc_info.value, WorkflowError)
    assert exc_info.value.actor == "mia"
