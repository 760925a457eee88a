from __future__ import annotations
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from relay.core.errors import AuditError, StoreError
from relay.core.timeutil import to_iso, utcnow
from relay.log import get_logger
from .io import append_jsonl, iter_jsonl

log = get_logger("audit")


class AuditStatus(str, Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"


TERMINAL = {AuditStatus.EXECUTED, AuditStatus.FAILED}


@dataclass(frozen=True)
class AuditLogEntry:
    principal_id: str
    action_kind: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    mode: str = "commit"
    status: AuditStatus = AuditStatus.PENDING
    detail: Optional[str] = None
    conversation_id: Optional[str] = None
    created_at: str = ""
    finished_at: Optional[str] = None
    action_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AuditLogEntry":
        d = dict(d)
        d["status"] = AuditStatus(d.get("status", "pending"))
        return cls(**d)


def _new_action_id() -> str:
    return f"act_{time.time_ns():x}_{uuid.uuid4().hex[:8]}"


class AuditLog:
    """Append-only JSONL record of execution attempts.

    Every id handed out starts ``pending`` and is moved exactly once to
    ``executed`` or ``failed``. The file holds one line per append and one per
    transition; the in-memory index is rebuilt from it on start-up.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._entries: Dict[str, AuditLogEntry] = {}
        self._order: List[str] = []
        self._replay()

    def _replay(self) -> None:
        for rec in iter_jsonl(self.path):
            kind = rec.get("kind")
            if kind == "audit_append":
                entry = AuditLogEntry.from_dict(rec["entry"])
                self._entries[entry.action_id] = entry
                self._order.append(entry.action_id)
            elif kind == "audit_transition":
                cur = self._entries.get(rec.get("actionId", ""))
                if cur is None:
                    continue
                self._entries[cur.action_id] = replace(
                    cur, status=AuditStatus(rec["status"]), detail=rec.get("detail"), finished_at=rec.get("ts"),
                )

    def _write(self, rec: Dict[str, Any]) -> None:
        try:
            append_jsonl(self.path, rec)
        except (OSError, StoreError) as e:
            raise AuditError(f"audit write failed: {e}") from e

    def append(self, entry: AuditLogEntry) -> str:
        with self._lock:
            action_id = _new_action_id()
            stored = replace(entry, action_id=action_id, status=AuditStatus.PENDING, created_at=entry.created_at or to_iso(utcnow()),
                             finished_at=None, detail=None)
            self._write({"kind": "audit_append", "entry": stored.to_dict()})
            self._entries[action_id] = stored
            self._order.append(action_id)
        log.info("audit_append", action_id=action_id, action=entry.action_kind, mode=entry.mode, principal=entry.principal_id)
        return action_id

    def transition(self, action_id: str, status: AuditStatus | str, detail: Optional[str] = None) -> None:
        status = AuditStatus(status)
        if status not in TERMINAL:
            raise AuditError(f"cannot transition to {status.value}")
        with self._lock:
            cur = self._entries.get(action_id)
            if cur is None:
                raise AuditError(f"unknown action id {action_id}")
            if cur.status == status:
                return
            if cur.status in TERMINAL:
                raise AuditError(f"{action_id} already {cur.status.value}")
            ts = to_iso(utcnow())
            self._write({"kind": "audit_transition", "actionId": action_id, "status": status.value, "detail": detail, "ts": ts})
            self._entries[action_id] = replace(cur, status=status, detail=detail, finished_at=ts)
        log.info("audit_transition", action_id=action_id, status=status.value)

    def get(self, action_id: str) -> Optional[AuditLogEntry]:
        return self._entries.get(action_id)

    def by_principal(self, principal_id: str, limit: int = 50) -> List[AuditLogEntry]:
        out = [self._entries[a] for a in reversed(self._order) if self._entries[a].principal_id == principal_id]
        return out[:max(0, limit)]

    def by_conversation(self, conversation_id: str, principal_id: Optional[str] = None) -> List[AuditLogEntry]:
        out = []
        for a in self._order:
            e = self._entries[a]
            if e.conversation_id != conversation_id:
                continue
            if principal_id is not None and e.principal_id != principal_id:
                continue
            out.append(e)
        return out
