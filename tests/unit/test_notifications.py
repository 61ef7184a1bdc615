import json
from urllib.parse import parse_qs

import httpx
import pytest

from trainflow.config import TrainflowConfig
from trainflow.notifications import (
    CompositeDispatcher,
    EmailDispatcher,
    InMemoryDispatcher,
    WebhookDispatcher,
    get_dispatcher,
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_webhook_payloads_per_channel():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen[str(request.url)] = json.loads(request.content)
        return httpx.Response(200, text="ok")

    async with _client(handler) as client:
        dispatcher = WebhookDispatcher(
            slack_url="https://hooks.slack.test/x", teams_url="https://teams.test/y", client=client
        )
        result = await dispatcher.dispatch(["slack", "teams", "a@b.c"], "Approved", "Your request passed")

    assert result.ok
    assert seen["https://hooks.slack.test/x"] == {"text": "*Approved*\nYour request passed"}
    assert seen["https://teams.test/y"] == {"text": "Approved\nYour request passed"}


@pytest.mark.asyncio
async def test_webhook_failure_is_reported_not_raised():
    async with _client(lambda request: httpx.Response(500, text="boom")) as client:
        dispatcher = WebhookDispatcher(slack_url="https://hooks.slack.test/x", client=client)
        result = await dispatcher.dispatch(["slack", "teams"], "s", "b")

    assert not result.ok
    assert "slack webhook returned 500" in result.detail
    assert "Missing teams webhook URL" in result.detail


@pytest.mark.asyncio
async def test_webhook_transport_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as client:
        result = await WebhookDispatcher(slack_url="https://x.test", client=client).dispatch(["slack"], "s", "b")
    assert not result.ok
    assert "request failed" in result.detail


@pytest.mark.asyncio
async def test_email_form_and_api_error():
    forms = []

    def handler(request: httpx.Request) -> httpx.Response:
        forms.append({k: v[0] for k, v in parse_qs(request.content.decode()).items()})
        if len(forms) == 1:
            return httpx.Response(200, json={"success": True, "data": {}})
        return httpx.Response(200, json={"success": False, "error": "Invalid API key"})

    async with _client(handler) as client:
        dispatcher = EmailDispatcher(api_key="k", from_email="noreply@corp.test", client=client)
        ok = await dispatcher.dispatch(["eve@corp.test", "slack"], "Hello", "<p>Hi</p>")
        bad = await dispatcher.dispatch(["eve@corp.test"], "Hello", "<p>Hi</p>")

    assert ok.ok and ok.detail == "eve@corp.test"
    assert forms[0]["to"] == "eve@corp.test"
    assert forms[0]["fromName"] == "Training Manager"
    assert forms[0]["bodyHtml"] == "<p>Hi</p>"
    assert not bad.ok
    assert "Invalid API key" in bad.detail


@pytest.mark.asyncio
async def test_email_without_credentials():
    result = await EmailDispatcher(api_key=None, from_email=None).dispatch(["a@b.c"], "s", "b")
    assert not result.ok
    assert "credentials" in result.detail


@pytest.mark.asyncio
async def test_composite_routes_by_recipient():
    chat, email = InMemoryDispatcher(), InMemoryDispatcher(fail_with="bounced")
    result = await CompositeDispatcher(chat=chat, email=email).dispatch(["teams", "x@y.z"], "s", "b")

    assert chat.sent[0].recipients == ["teams"]
    assert email.sent[0].recipients == ["x@y.z"]
    assert not result.ok and result.detail == "bounced"


def test_get_dispatcher_backends(monkeypatch):
    monkeypatch.delenv("TRAINFLOW_NOTIFICATIONS", raising=False)
    config = TrainflowConfig.model_validate(
        {"notifications": {"backend": "composite", "webhook": {"slack_url": "https://s.test"}}}
    )
    dispatcher = get_dispatcher(config=config)
    assert isinstance(dispatcher, CompositeDispatcher)
    assert dispatcher.chat.urls["slack"] == "https://s.test"

    assert isinstance(get_dispatcher("inmemory", config=config), InMemoryDispatcher)
    monkeypatch.setenv("TRAINFLOW_NOTIFICATIONS", "email")
    assert isinstance(get_dispatcher(config=config), EmailDispatcher)
    with pytest.raises(ValueError):
        get_dispatcher("pigeon", config=config)
