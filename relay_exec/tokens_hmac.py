from __future__ import annotations
import base64, hashlib, hmac, json, time, uuid
from dataclasses import dataclass
from typing import Optional

def _b64(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("utf-8").rstrip("=")

def _b64d(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("utf-8"))

def _sign(secret: bytes, payload: dict) -> str:
    p = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return _b64(hmac.new(secret, p, hashlib.sha256).digest())

@dataclass(frozen=True)
class PrincipalToken:
    sub: str
    scope: str
    jti: str
    exp: float

def mint(secret: bytes, *, principal_id: str, ttl_s: int, scope: str = "actions") -> str:
    if not secret:
        raise ValueError("empty signing secret")
    payload = {"sub": principal_id, "scope": scope, "jti": str(uuid.uuid4()), "exp": time.time() + ttl_s}
    blob = {"payload": payload, "sig": _sign(secret, payload)}
    return _b64(json.dumps(blob, sort_keys=True, separators=(",", ":")).encode("utf-8"))

def verify(secret: bytes, token: str, *, now: Optional[float] = None) -> Optional[PrincipalToken]:
    """Returns the decoded token, or None when it is malformed, forged or expired."""
    if not secret or not token:
        return None
    try:
        blob = json.loads(_b64d(token).decode("utf-8"))
        payload = blob["payload"]
        if not hmac.compare_digest(str(blob["sig"]), _sign(secret, payload)):
            return None
        tok = PrincipalToken(sub=str(payload["sub"]), scope=str(payload.get("scope", "")), jti=str(payload["jti"]),
                             exp=float(payload["exp"]))
    except (ValueError, KeyError, TypeError):
        return None
    if (now if now is not None else time.time()) >= tok.exp:
        return None
    return tok
