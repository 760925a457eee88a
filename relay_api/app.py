from __future__ import annotations
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request

from relay.config import load_config
from relay.core.errors import AuthError
from relay.core.wire import ActionRequest, outcome_to_wire
from relay.log import configure_logging
from relay_exec.audit_log import AuditLogEntry
from relay_exec.service import ExecutionService, build_service
from relay_exec.tokens_hmac import PrincipalToken
from relay_api import auth


def entry_to_wire(e: AuditLogEntry) -> Dict[str, Any]:
    return {
        "actionId": e.action_id,
        "principalId": e.principal_id,
        "actionKind": e.action_kind,
        "parameters": e.parameters,
        "mode": e.mode,
        "status": e.status.value,
        "detail": e.detail,
        "conversationId": e.conversation_id,
        "createdAt": e.created_at,
        "finishedAt": e.finished_at,
    }


def create_app(service: ExecutionService, secret: bytes) -> FastAPI:
    if not secret:
        raise RuntimeError("Set RELAY_EXEC_SECRET")
    app = FastAPI(title="relay execution service")
    app.state.service = service

    def principal(request: Request) -> PrincipalToken:
        return auth.authenticate(request, secret)

    def run(mode: str, req: ActionRequest, token: PrincipalToken) -> Dict[str, Any]:
        auth.authorize(token, req.principal_id)
        fn = service.resolve if mode == "resolve" else service.commit
        try:
            outcome = fn(req.action_kind, req.parameters, req.principal_id, req.conversation_id)
        except AuthError as e:
            raise HTTPException(status_code=403, detail=str(e))
        return outcome_to_wire(outcome)

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.post("/v1/actions/resolve")
    def resolve(req: ActionRequest, token: PrincipalToken = Depends(principal)):
        return run("resolve", req, token)

    @app.post("/v1/actions/commit")
    def commit(req: ActionRequest, token: PrincipalToken = Depends(principal)):
        return run("commit", req, token)

    @app.get("/v1/audit")
    def audit_list(conversationId: Optional[str] = None, limit: int = Query(50, ge=1, le=500),
                   token: PrincipalToken = Depends(principal)):
        rows = service.audit_entries(token.sub, conversation_id=conversationId, limit=limit)
        return {"entries": [entry_to_wire(e) for e in rows]}

    @app.get("/v1/audit/{action_id}")
    def audit_get(action_id: str, token: PrincipalToken = Depends(principal)):
        e = service.audit_entry(token.sub, action_id)
        if e is None:
            raise HTTPException(status_code=404, detail="not found")
        return entry_to_wire(e)

    return app


def create_default_app() -> FastAPI:
    cfg = load_config()
    configure_logging(cfg.log_level, cfg.log_json)
    return create_app(build_service(cfg), cfg.exec_secret_bytes)
