from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from relay.llm.sanitize import sanitize_display_text
from .timeutil import parse_iso, zone
from .types import ActionIntent, ActionKind


@dataclass(frozen=True)
class ActionSpec:
    kind: ActionKind
    required: Tuple[str, ...]
    optional: Tuple[str, ...] = ()
    # each group must have at least one member present
    one_of: Tuple[Tuple[str, ...], ...] = ()
    identifying: Optional[str] = None
    resolved: Optional[str] = None
    scheduling: bool = False
    allows_new_target: bool = False
    defaults: Dict[str, Any] = field(default_factory=dict)

    @property
    def keys(self) -> Set[str]:
        out = set(self.required) | set(self.optional)
        for group in self.one_of:
            out |= set(group)
        return out


SPECS: Dict[ActionKind, ActionSpec] = {
    ActionKind.SCHEDULE_EVENT: ActionSpec(
        kind=ActionKind.SCHEDULE_EVENT,
        required=("startTime",),
        optional=("duration", "title", "timezone", "query"),
        one_of=(("targetName", "targetId"),),
        identifying="targetName",
        resolved="targetId",
        scheduling=True,
        allows_new_target=True,
        defaults={"duration": 30},
    ),
    ActionKind.SET_REMINDER: ActionSpec(
        kind=ActionKind.SET_REMINDER,
        required=("reminderText", "dueTime"),
        optional=("targetName", "targetId", "timezone"),
        identifying="targetName",
        resolved="targetId",
        allows_new_target=True,
    ),
    ActionKind.SEND_MESSAGE: ActionSpec(
        kind=ActionKind.SEND_MESSAGE,
        required=("messageText",),
        one_of=(("targetName", "chatId"),),
        identifying="targetName",
        resolved="chatId",
    ),
    ActionKind.SEARCH_HISTORY: ActionSpec(
        kind=ActionKind.SEARCH_HISTORY,
        required=("query",),
        optional=("chatId", "limit"),
        defaults={"limit": 10},
    ),
}


def spec_for(kind: ActionKind) -> ActionSpec:
    return SPECS[ActionKind.parse(kind)]


def is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def missing_required(kind: ActionKind, parameters: Dict[str, Any]) -> Set[str]:
    spec = spec_for(kind)
    missing = {k for k in spec.required if not is_present(parameters.get(k))}
    for group in spec.one_of:
        if not any(is_present(parameters.get(k)) for k in group):
            missing.add("|".join(group))
    return missing


def needs_resolution(kind: ActionKind, parameters: Dict[str, Any]) -> bool:
    """A human-identifying field was supplied without its resolved identifier."""
    spec = spec_for(kind)
    if not spec.identifying or not spec.resolved:
        return False
    return is_present(parameters.get(spec.identifying)) and not is_present(parameters.get(spec.resolved))


def with_defaults(kind: ActionKind, parameters: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(spec_for(kind).defaults)
    out.update({k: v for k, v in parameters.items() if v is not None})
    return out


# --- display only -----------------------------------------------------------

def _text(parameters: Dict[str, Any], key: str) -> Optional[str]:
    v = parameters.get(key)
    if isinstance(v, bool) or v is None:
        return None
    if isinstance(v, (int, float)):
        return str(int(v)) if float(v).is_integer() else str(v)
    if isinstance(v, str) and v.strip():
        return v.strip()
    return None


def _when(parameters: Dict[str, Any], key: str, default_tz: str = "UTC") -> Optional[str]:
    tz = zone(_text(parameters, "timezone"), default_tz)
    dt = parse_iso(parameters.get(key), tz)
    if dt is None:
        return None
    local = dt.astimezone(tz)
    hour = local.hour % 12 or 12
    return f"{local:%a %b} {local.day}, {local.year} {hour}:{local:%M} {'AM' if local.hour < 12 else 'PM'}"


def render(intent: ActionIntent, default_tz: str = "UTC") -> str:
    p = intent.parameters
    target = sanitize_display_text(_text(p, "targetName") or "")
    if intent.kind == ActionKind.SCHEDULE_EVENT:
        duration = _text(p, "duration") or "30"
        when = _when(p, "startTime", default_tz)
        who = target or "contact"
        if when:
            return f"Schedule event with {who} on {when} ({duration} min)"
        return f"Schedule event with {who}"
    if intent.kind == ActionKind.SET_REMINDER:
        text = sanitize_display_text(_text(p, "reminderText") or "reminder")
        when = _when(p, "dueTime", default_tz)
        if when and target:
            return f"Remind about {target}: {text} on {when}"
        if when:
            return f"Reminder: {text} on {when}"
        return f"Set reminder: {text}"
    if intent.kind == ActionKind.SEND_MESSAGE:
        text = _text(p, "messageText") or ""
        preview = sanitize_display_text(text, 50)
        suffix = f" to {target}" if target else ""
        return f'Send message{suffix}: "{preview}"'
    query = sanitize_display_text(_text(p, "query") or "messages")
    limit = _text(p, "limit") or "10"
    return f'Search for: "{query}" (up to {limit} results)'


def formatted_parameters(intent: ActionIntent, default_tz: str = "UTC") -> List[Tuple[str, str]]:
    p = intent.parameters
    rows: List[Tuple[str, str]] = []

    def add(label: str, value: Optional[str]):
        if value:
            rows.append((label, value))

    if intent.kind == ActionKind.SCHEDULE_EVENT:
        add("With", _text(p, "targetName"))
        add("Title", _text(p, "title"))
        add("Date & Time", _when(p, "startTime", default_tz))
        duration = _text(p, "duration")
        add("Duration", f"{duration} minutes" if duration else None)
    elif intent.kind == ActionKind.SET_REMINDER:
        add("About", _text(p, "targetName"))
        add("Reminder", sanitize_display_text(_text(p, "reminderText") or "", 500))
        add("Due", _when(p, "dueTime", default_tz))
    elif intent.kind == ActionKind.SEND_MESSAGE:
        add("To", _text(p, "targetName"))
        add("Message", sanitize_display_text(_text(p, "messageText") or "", 1000))
    else:
        add("Query", sanitize_display_text(_text(p, "query") or ""))
        add("Max Results", _text(p, "limit"))
    return rows
