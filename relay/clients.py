from __future__ import annotations
import asyncio
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import ValidationError

from relay.core.errors import AuthError, RelayError
from relay.core.types import ActionKind, Failure, FailureKind, Outcome
from relay.core.wire import ActionRequest, outcome_from_wire
from relay.log import get_logger

log = get_logger("client")

RESOLVE_PATH = "/v1/actions/resolve"
COMMIT_PATH = "/v1/actions/commit"


class ExecutionClient(Protocol):
    async def resolve(self, kind: ActionKind, parameters: Dict[str, Any], conversation_id: Optional[str] = None) -> Outcome: ...

    async def commit(self, kind: ActionKind, parameters: Dict[str, Any], conversation_id: Optional[str] = None) -> Outcome: ...


class TargetCreator(Protocol):
    async def create(self, display_name: str) -> str:
        """Creates a new target and returns its id."""
        ...


class LocalExecutionClient:
    """Calls an in-process ExecutionService from a worker thread."""

    def __init__(self, service, principal_id: str):
        self.service = service
        self.principal_id = principal_id

    async def _call(self, fn, kind: ActionKind, parameters: Dict[str, Any], conversation_id: Optional[str]) -> Outcome:
        try:
            return await asyncio.to_thread(fn, kind, dict(parameters), self.principal_id, conversation_id)
        except AuthError as e:
            return Failure(FailureKind.AUTH, str(e))

    async def resolve(self, kind, parameters, conversation_id=None) -> Outcome:
        return await self._call(self.service.resolve, kind, parameters, conversation_id)

    async def commit(self, kind, parameters, conversation_id=None) -> Outcome:
        return await self._call(self.service.commit, kind, parameters, conversation_id)


class HttpExecutionClient:
    """Talks to the relay_api RPC surface with a principal bearer token."""

    def __init__(self, base_url: str, token: str, principal_id: str, *, timeout_s: float = 15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.principal_id = principal_id
        self.timeout_s = timeout_s
        self.transport = transport

    async def _post(self, path: str, kind: ActionKind, parameters: Dict[str, Any], conversation_id: Optional[str]) -> Outcome:
        body = ActionRequest(principal_id=self.principal_id, action_kind=kind, parameters=dict(parameters),
                             conversation_id=conversation_id).model_dump(mode="json", by_alias=True)
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_s, transport=self.transport) as c:
                r = await c.post(path, json=body, headers=headers)
        except (httpx.ReadTimeout, httpx.WriteTimeout) as e:
            log.warning("rpc_timeout", path=path, error=str(e)[:300])
            if path == COMMIT_PATH:
                return Failure(FailureKind.UNKNOWN, "No answer from the server, so that may or may not have gone through.")
            return Failure(FailureKind.TRANSPORT, "The server took too long. Please try again.")
        except httpx.HTTPError as e:
            log.warning("rpc_transport_error", path=path, error=str(e)[:300])
            return Failure(FailureKind.TRANSPORT, "Couldn't reach the server. Please try again.")
        if r.status_code in (401, 403):
            return Failure(FailureKind.AUTH, "You're not allowed to do that.")
        if r.status_code == 422:
            return Failure(FailureKind.PARAMETER, "The server rejected the request.")
        if r.status_code >= 400:
            log.warning("rpc_http_error", path=path, status=r.status_code)
            return Failure(FailureKind.TRANSPORT, f"Server error ({r.status_code}). Please try again.")
        try:
            return outcome_from_wire(r.json())
        except (ValueError, ValidationError, RelayError) as e:
            log.warning("rpc_bad_payload", path=path, error=str(e)[:300])
            return Failure(FailureKind.TRANSPORT, "The server sent an unexpected response.")

    async def resolve(self, kind, parameters, conversation_id=None) -> Outcome:
        return await self._post(RESOLVE_PATH, kind, parameters, conversation_id)

    async def commit(self, kind, parameters, conversation_id=None) -> Outcome:
        return await self._post(COMMIT_PATH, kind, parameters, conversation_id)


class LocalTargetCreator:
    """Adds the new person as a prospect contact of the principal."""

    def __init__(self, store, principal_id: str):
        self.store = store
        self.principal_id = principal_id

    async def create(self, display_name: str) -> str:
        contact = await asyncio.to_thread(self.store.add_contact, self.principal_id, display_name, prospect=True)
        log.info("target_created", target_id=contact.id, prospect=True)
        return contact.id
