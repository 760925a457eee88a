from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from relay.core.types import ActionKind, SelectionContext, SelectionOption, SelectionRequest, SelectionType
from .store import StateStore


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        cur = [i]
        for j, cb in enumerate(b, 1):
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + (ca != cb)))
        prev = cur
    return prev[-1]


def name_matches(display_name: str, query: str) -> bool:
    name = display_name.strip().lower()
    q = query.strip().lower()
    if not name or not q:
        return False
    return name == q or q in name or name in q or levenshtein(name, q) <= 2


@dataclass(frozen=True)
class TargetMatch:
    target_id: str
    display_name: str
    email: str = ""
    chat_id: Optional[str] = None


class TargetDirectory:
    def __init__(self, store: StateStore):
        self.store = store

    def find(self, principal_id: str, name: str, *, require_chat: bool = False) -> List[TargetMatch]:
        out: List[TargetMatch] = []
        for c in self.store.contacts_for(principal_id):
            if not name_matches(c.display_name, name):
                continue
            chat = self.store.find_chat(principal_id, c.id)
            if require_chat and chat is None:
                continue
            out.append(TargetMatch(c.id, c.display_name, c.email, chat.id if chat else None))
        return out


def build_selection(kind: ActionKind, parameters: Dict[str, Any], matches: List[TargetMatch]) -> SelectionRequest:
    options = []
    for m in matches:
        meta: Dict[str, Any] = {"targetId": m.target_id, "displayName": m.display_name}
        if kind == ActionKind.SEND_MESSAGE:
            meta["chatId"] = m.chat_id
        options.append(SelectionOption(id=m.target_id, title=m.display_name, subtitle=m.email or None, icon="person", metadata=meta))
    return SelectionRequest(
        selection_type=SelectionType.TARGET,
        prompt="Who did you mean?",
        options=options,
        context=SelectionContext(original_action=kind, original_parameters=dict(parameters)),
    )
