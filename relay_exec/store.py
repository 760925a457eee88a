from __future__ import annotations
import threading
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from relay.core.timeutil import parse_iso, to_iso, utcnow
from .io import atomic_write_json, read_json_list


@dataclass(frozen=True)
class Contact:
    id: str
    principal_id: str
    display_name: str
    email: str = ""
    prospect: bool = False


@dataclass(frozen=True)
class Chat:
    id: str
    members: List[str] = field(default_factory=list)
    last_message: str = ""
    last_message_at: Optional[str] = None


@dataclass(frozen=True)
class Commitment:
    id: str
    principal_id: str
    title: str
    start_time: str
    end_time: str
    target_id: Optional[str] = None
    status: str = "scheduled"
    created_by: str = "ai"

    @property
    def start(self) -> datetime:
        return parse_iso(self.start_time)

    @property
    def end(self) -> datetime:
        return parse_iso(self.end_time)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class StateStore:
    """Backing state the effects act on, kept as JSON documents under ``root``."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self._io_lock = threading.RLock()
        self._locks_guard = threading.Lock()
        self._principal_locks: Dict[str, threading.Lock] = {}

    def _path(self, name: str) -> Path:
        return self.root / f"{name}.json"

    def _load(self, name: str) -> List[Dict[str, Any]]:
        return read_json_list(self._path(name))

    def _save(self, name: str, items: List[Dict[str, Any]]) -> None:
        atomic_write_json(self._path(name), items)

    def _insert(self, name: str, rec: Dict[str, Any]) -> None:
        with self._io_lock:
            items = self._load(name)
            items.append(rec)
            self._save(name, items)

    @contextmanager
    def principal_lock(self, principal_id: str) -> Iterator[None]:
        """Serializes check-then-write sequences for one principal."""
        with self._locks_guard:
            lock = self._principal_locks.setdefault(principal_id, threading.Lock())
        with lock:
            yield

    # contacts

    def contacts_for(self, principal_id: str) -> List[Contact]:
        return [Contact(**c) for c in self._load("contacts") if c.get("principal_id") == principal_id]

    def get_contact(self, principal_id: str, contact_id: str) -> Optional[Contact]:
        return next((c for c in self.contacts_for(principal_id) if c.id == contact_id), None)

    def add_contact(self, principal_id: str, display_name: str, *, email: str = "", prospect: bool = False,
                    contact_id: Optional[str] = None) -> Contact:
        c = Contact(id=contact_id or _new_id("usr"), principal_id=principal_id, display_name=display_name.strip(),
                    email=email, prospect=prospect)
        self._insert("contacts", asdict(c))
        return c

    # chats and messages

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        rec = next((c for c in self._load("chats") if c.get("id") == chat_id), None)
        return Chat(**rec) if rec else None

    def find_chat(self, principal_id: str, member_id: str) -> Optional[Chat]:
        for rec in self._load("chats"):
            members = rec.get("members") or []
            if principal_id in members and member_id in members:
                return Chat(**rec)
        return None

    def add_chat(self, members: List[str], chat_id: Optional[str] = None) -> Chat:
        chat = Chat(id=chat_id or _new_id("chat"), members=list(members))
        self._insert("chats", asdict(chat))
        return chat

    def add_message(self, chat_id: str, sender_id: str, text: str) -> Dict[str, Any]:
        now = to_iso(utcnow())
        msg = {"id": _new_id("msg"), "chat_id": chat_id, "sender_id": sender_id, "text": text, "timestamp": now}
        with self._io_lock:
            messages = self._load("messages")
            messages.append(msg)
            chats = self._load("chats")
            for rec in chats:
                if rec.get("id") == chat_id:
                    rec["last_message"] = text
                    rec["last_message_at"] = now
            self._save("messages", messages)
            self._save("chats", chats)
        return msg

    def messages_for(self, principal_id: str, chat_id: Optional[str] = None) -> List[Dict[str, Any]]:
        visible = {c["id"] for c in self._load("chats") if principal_id in (c.get("members") or [])}
        if chat_id is not None:
            visible &= {chat_id}
        return [m for m in self._load("messages") if m.get("chat_id") in visible]

    # commitments and reminders

    def commitments_for(self, principal_id: str, *, include_cancelled: bool = False) -> List[Commitment]:
        out = []
        for rec in self._load("commitments"):
            if rec.get("principal_id") != principal_id:
                continue
            if not include_cancelled and rec.get("status") == "cancelled":
                continue
            out.append(Commitment(**rec))
        return out

    def add_commitment(self, principal_id: str, title: str, start: datetime, end: datetime, *,
                       target_id: Optional[str] = None, created_by: str = "ai") -> Commitment:
        c = Commitment(id=_new_id("evt"), principal_id=principal_id, title=title, start_time=to_iso(start),
                       end_time=to_iso(end), target_id=target_id, created_by=created_by)
        self._insert("commitments", asdict(c))
        return c

    def add_reminder(self, principal_id: str, text: str, due: datetime, *, target_id: Optional[str] = None,
                     target_name: Optional[str] = None) -> Dict[str, Any]:
        rec = {
            "id": _new_id("rem"),
            "principal_id": principal_id,
            "target_id": target_id,
            "target_name": target_name,
            "text": text,
            "due_time": to_iso(due),
            "created_by": "ai",
            "created_at": to_iso(utcnow()),
            "completed": False,
        }
        self._insert("reminders", rec)
        return rec

    def reminders_for(self, principal_id: str) -> List[Dict[str, Any]]:
        return [r for r in self._load("reminders") if r.get("principal_id") == principal_id]
