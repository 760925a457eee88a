from datetime import timedelta

import httpx
import pytest

from conftest import NOW, TUESDAY_2PM
from relay.clients import HttpExecutionClient
from relay.core.timeutil import to_iso
from relay.core.types import ActionKind, Failure, FailureKind, NeedsSelection, Success
from relay_api.app import create_app
from relay_exec.tokens_hmac import mint

SECRET = b"secret"


def _client(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


def _auth(principal="me"):
    return {"Authorization": f"Bearer {mint(SECRET, principal_id=principal, ttl_s=60)}"}


def _reminder(principal="me"):
    return {"principalId": principal, "actionKind": "setReminder", "conversationId": "c1",
            "parameters": {"reminderText": "call back", "dueTime": to_iso(NOW + timedelta(hours=3))}}


@pytest.mark.asyncio
async def test_health(service):
    async with _client(create_app(service, SECRET)) as c:
        r = await c.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


@pytest.mark.asyncio
async def test_missing_or_bad_token_is_401_without_audit(service, people):
    async with _client(create_app(service, SECRET)) as c:
        r1 = await c.post("/v1/actions/commit", json=_reminder())
        r2 = await c.post("/v1/actions/commit", json=_reminder(), headers={"Authorization": "Bearer junk"})
        r3 = await c.post("/v1/actions/commit", json=_reminder(),
                          headers={"Authorization": f"Bearer {mint(b'other', principal_id='me', ttl_s=60)}"})
    assert [r.status_code for r in (r1, r2, r3)] == [401, 401, 401]
    assert service.audit.by_principal("me") == []


@pytest.mark.asyncio
async def test_principal_mismatch_is_403_without_audit(service, people):
    async with _client(create_app(service, SECRET)) as c:
        r = await c.post("/v1/actions/commit", json=_reminder("me"), headers=_auth("mallory"))
    assert r.status_code == 403
    assert service.audit.by_principal("me") == []
    assert service.audit.by_principal("mallory") == []


@pytest.mark.asyncio
async def test_resolve_returns_tagged_selection(service, people):
    body = {"principalId": "me", "actionKind": "scheduleEvent",
            "parameters": {"targetName": "Sam", "startTime": to_iso(TUESDAY_2PM), "duration": 60}}
    async with _client(create_app(service, SECRET)) as c:
        r = await c.post("/v1/actions/resolve", json=body, headers=_auth())
    assert r.status_code == 200
    data = r.json()
    assert data["outcome"] == "needs_selection"
    assert data["selection"]["context"]["originalParameters"] == body["parameters"]
    assert len(data["selection"]["options"]) == 2


@pytest.mark.asyncio
async def test_commit_and_read_back_audit(service, people):
    app = create_app(service, SECRET)
    async with _client(app) as c:
        r = await c.post("/v1/actions/commit", json=_reminder(), headers=_auth())
        assert r.status_code == 200
        out = r.json()
        assert out["outcome"] == "success"
        action_id = out["actionId"]

        one = await c.get(f"/v1/audit/{action_id}", headers=_auth())
        listing = await c.get("/v1/audit", params={"conversationId": "c1"}, headers=_auth())
        hidden = await c.get(f"/v1/audit/{action_id}", headers=_auth("someone_else"))

    assert one.status_code == 200
    assert one.json()["status"] == "executed"
    assert one.json()["mode"] == "commit"
    assert [e["actionId"] for e in listing.json()["entries"]] == [action_id]
    assert hidden.status_code == 404


@pytest.mark.asyncio
async def test_unknown_action_kind_is_rejected_before_audit(service):
    body = {"principalId": "me", "actionKind": "orderPizza", "parameters": {}}
    async with _client(create_app(service, SECRET)) as c:
        r = await c.post("/v1/actions/commit", json=body, headers=_auth())
    assert r.status_code == 422
    assert service.audit.by_principal("me") == []


def test_app_refuses_empty_secret(service):
    with pytest.raises(RuntimeError):
        create_app(service, b"")


@pytest.mark.asyncio
async def test_http_client_maps_outcomes(service, people):
    transport = httpx.ASGITransport(app=create_app(service, SECRET))
    token = mint(SECRET, principal_id="me", ttl_s=60)
    client = HttpExecutionClient("http://test", token, "me", transport=transport)

    sel = await client.resolve(ActionKind.SCHEDULE_EVENT, {"targetName": "Sam", "startTime": to_iso(TUESDAY_2PM)})
    assert isinstance(sel, NeedsSelection)
    assert sel.request.context.original_action == ActionKind.SCHEDULE_EVENT

    done = await client.commit(ActionKind.SET_REMINDER, _reminder()["parameters"], "c1")
    assert isinstance(done, Success)

    bad = HttpExecutionClient("http://test", token, "mallory", transport=transport)
    denied = await bad.commit(ActionKind.SET_REMINDER, _reminder()["parameters"])
    assert isinstance(denied, Failure)
    assert denied.kind == FailureKind.AUTH


@pytest.mark.asyncio
async def test_http_commit_read_timeout_is_unknown_not_transport():
    def slow(request):
        raise httpx.ReadTimeout("no response", request=request)

    client = HttpExecutionClient("http://test", "tok", "me", transport=httpx.MockTransport(slow))
    params = _reminder()["parameters"]
    committed = await client.commit(ActionKind.SET_REMINDER, params)
    resolved = await client.resolve(ActionKind.SET_REMINDER, params)
    assert committed.kind == FailureKind.UNKNOWN
    assert not committed.retryable
    assert resolved.kind == FailureKind.TRANSPORT
    assert resolved.retryable
