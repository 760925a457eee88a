from __future__ import annotations
from typing import Optional

from fastapi import HTTPException, Request

from relay.log import get_logger
from relay_exec.tokens_hmac import PrincipalToken, verify

log = get_logger("api.auth")


def bearer_token(request: Request) -> Optional[str]:
    raw = request.headers.get("authorization") or ""
    scheme, _, tok = raw.partition(" ")
    if scheme.lower() != "bearer" or not tok.strip():
        return None
    return tok.strip()


def authenticate(request: Request, secret: bytes) -> PrincipalToken:
    tok = bearer_token(request)
    if not tok:
        raise HTTPException(status_code=401, detail="missing bearer token", headers={"WWW-Authenticate": "Bearer"})
    principal = verify(secret, tok)
    if principal is None:
        log.warning("token_rejected", path=request.url.path)
        raise HTTPException(status_code=401, detail="invalid or expired token", headers={"WWW-Authenticate": "Bearer"})
    return principal


def authorize(token: PrincipalToken, principal_id: str) -> None:
    if token.sub != principal_id:
        log.warning("principal_mismatch", token_sub=token.sub, requested=principal_id)
        raise HTTPException(status_code=403, detail="token does not match principalId")
