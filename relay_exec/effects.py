from __future__ import annotations
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Any, Callable, Dict, List, Optional, Tuple

from relay.core import taxonomy
from relay.core.errors import EffectError, ParameterError
from relay.core.timeutil import parse_iso, zone
from relay.core.types import ActionKind, ConflictResult
from relay.log import get_logger
from .conflicts import ConflictDetector
from .directory import TargetDirectory
from .store import Commitment, StateStore

log = get_logger("effects")

MIN_DURATION_MIN = 5
MAX_DURATION_MIN = 480
MAX_REMINDER_CHARS = 500
REMINDER_GRACE = timedelta(days=7)
MAX_SEARCH_LIMIT = 50

CalendarMirror = Callable[[Commitment, str], None]


class SlotTaken(EffectError):
    def __init__(self, conflict: ConflictResult):
        super().__init__("That time overlaps an existing commitment.")
        self.conflict = conflict


@dataclass(frozen=True)
class EffectOutcome:
    message: str
    data: Dict[str, Any]


def _as_int(parameters: Dict[str, Any], key: str, default: int) -> int:
    raw = parameters.get(key, default)
    if isinstance(raw, bool):
        raise ParameterError(f"{key} must be a number")
    try:
        return int(float(raw))
    except (TypeError, ValueError, OverflowError):
        raise ParameterError(f"{key} must be a number")


def _when(parameters: Dict[str, Any], key: str, tz: tzinfo) -> datetime:
    dt = parse_iso(parameters.get(key), tz)
    if dt is None:
        raise ParameterError(f"{key} must be an ISO-8601 date and time", missing=[key])
    return dt


def _display(dt: datetime, tz: tzinfo) -> str:
    local = dt.astimezone(tz)
    return f"{local:%A, %B} {local.day}, {local.year} at {local:%H:%M}"


def validate(kind: ActionKind, parameters: Dict[str, Any], *, now: datetime, default_tz: str = "UTC") -> Dict[str, Any]:
    """Required keys plus the per-kind range checks; returns parameters with defaults filled."""
    missing = taxonomy.missing_required(kind, parameters)
    if missing:
        raise ParameterError(f"Missing required parameters: {', '.join(sorted(missing))}", missing=missing)
    params = taxonomy.with_defaults(kind, parameters)
    tz = zone(params.get("timezone"), default_tz)

    if kind == ActionKind.SCHEDULE_EVENT:
        start = _when(params, "startTime", tz)
        if start <= now:
            raise ParameterError("That time has already passed. Please provide a future date and time.")
        duration = _as_int(params, "duration", 30)
        if not MIN_DURATION_MIN <= duration <= MAX_DURATION_MIN:
            raise ParameterError("Event duration must be between 5 minutes and 8 hours.")
        params["duration"] = duration
    elif kind == ActionKind.SET_REMINDER:
        due = _when(params, "dueTime", tz)
        if due < now - REMINDER_GRACE:
            raise ParameterError("Reminder date is too far in the past. Please provide a more recent date.")
        if len(str(params["reminderText"])) > MAX_REMINDER_CHARS:
            raise ParameterError("Reminder text is too long. Please keep it under 500 characters.")
    elif kind == ActionKind.SEARCH_HISTORY:
        params["limit"] = max(1, min(_as_int(params, "limit", 10), MAX_SEARCH_LIMIT))
    return params


def _terms(text: str) -> List[str]:
    return re.findall(r"\w+", (text or "").lower())


class Effects:
    """Performs the side effect of a fully resolved action against the state store."""

    def __init__(self, store: StateStore, directory: TargetDirectory, detector: ConflictDetector, *,
                 default_tz: str = "UTC", calendar_mirror: Optional[CalendarMirror] = None):
        self.store = store
        self.directory = directory
        self.detector = detector
        self.default_tz = default_tz
        self.calendar_mirror = calendar_mirror

    def run(self, principal_id: str, kind: ActionKind, params: Dict[str, Any]) -> EffectOutcome:
        if kind == ActionKind.SCHEDULE_EVENT:
            return self._schedule_event(principal_id, params)
        if kind == ActionKind.SET_REMINDER:
            return self._set_reminder(principal_id, params)
        if kind == ActionKind.SEND_MESSAGE:
            return self._send_message(principal_id, params)
        if kind == ActionKind.SEARCH_HISTORY:
            return self._search_history(principal_id, params)
        raise EffectError(f"Unknown action: {kind}")

    def _contact(self, principal_id: str, params: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
        target_id = params.get("targetId")
        name = params.get("targetName")
        if taxonomy.is_present(target_id):
            c = self.store.get_contact(principal_id, str(target_id))
            if c is None:
                raise EffectError("That contact no longer exists.")
            return c.id, (name or c.display_name)
        if not taxonomy.is_present(name):
            return None, None
        matches = self.directory.find(principal_id, str(name))
        if len(matches) != 1:
            raise EffectError(f"'{name}' does not identify exactly one contact.")
        return matches[0].target_id, matches[0].display_name

    def _schedule_event(self, principal_id: str, params: Dict[str, Any]) -> EffectOutcome:
        tz = zone(params.get("timezone"), self.default_tz)
        start = _when(params, "startTime", tz)
        duration = timedelta(minutes=int(params.get("duration", 30)))
        target_id, name = self._contact(principal_id, params)
        title = str(params.get("title") or f"Event with {name}")
        with self.store.principal_lock(principal_id):
            conflict = self.detector.check(principal_id, ActionKind.SCHEDULE_EVENT, params, start, duration, tz)
            if conflict is not None:
                raise SlotTaken(conflict)
            event = self.store.add_commitment(principal_id, title, start, start + duration, target_id=target_id)
        data: Dict[str, Any] = {"eventId": event.id, "targetId": target_id, "title": title,
                                "startTime": event.start_time, "endTime": event.end_time}
        if self.calendar_mirror is not None:
            try:
                self.calendar_mirror(event, name or "")
                data["calendarSync"] = "synced"
            except Exception as e:
                log.warning("calendar_mirror_failed", event_id=event.id, error=str(e)[:300])
                data["calendarSync"] = "failed"
        minutes = int(duration.total_seconds() // 60)
        return EffectOutcome(f"Scheduled event with {name} for {_display(start, tz)} ({minutes} minutes)", data)

    def _set_reminder(self, principal_id: str, params: Dict[str, Any]) -> EffectOutcome:
        tz = zone(params.get("timezone"), self.default_tz)
        due = _when(params, "dueTime", tz)
        target_id, name = self._contact(principal_id, params)
        text = str(params["reminderText"]).strip()
        rec = self.store.add_reminder(principal_id, text, due, target_id=target_id, target_name=name)
        return EffectOutcome(f'Reminder set for {_display(due, tz)}: "{text}"',
                             {"reminderId": rec["id"], "targetId": target_id, "dueTime": rec["due_time"]})

    def _send_message(self, principal_id: str, params: Dict[str, Any]) -> EffectOutcome:
        chat_id = params.get("chatId")
        if not taxonomy.is_present(chat_id):
            name = params.get("targetName")
            matches = self.directory.find(principal_id, str(name), require_chat=True)
            if len(matches) != 1:
                raise EffectError(f"'{name}' does not identify exactly one conversation.")
            chat_id = matches[0].chat_id
        chat = self.store.get_chat(str(chat_id))
        if chat is None:
            raise EffectError("Chat not found.")
        if principal_id not in chat.members:
            log.warning("chat_access_denied", chat_id=chat.id, principal=principal_id)
            raise EffectError("You don't have access to this chat.")
        msg = self.store.add_message(chat.id, principal_id, str(params["messageText"]))
        return EffectOutcome("Message sent successfully", {"messageId": msg["id"], "chatId": chat.id})

    def _search_history(self, principal_id: str, params: Dict[str, Any]) -> EffectOutcome:
        query = str(params["query"])
        wanted = set(_terms(query))
        scored = []
        for m in self.store.messages_for(principal_id, params.get("chatId")):
            have = set(_terms(m.get("text", "")))
            if not wanted or not have:
                continue
            score = len(wanted & have) / len(wanted)
            if score > 0:
                scored.append((score, m))
        scored.sort(key=lambda x: (x[0], x[1].get("timestamp", "")), reverse=True)
        hits = [{"text": m["text"], "senderId": m["sender_id"], "timestamp": m["timestamp"], "chatId": m["chat_id"],
                 "score": round(score, 3)} for score, m in scored[:params["limit"]]]
        if not hits:
            return EffectOutcome(f'No messages found matching "{query}".', {"messages": [], "count": 0})
        return EffectOutcome(f'Found {len(hits)} message(s) matching "{query}"', {"messages": hits, "count": len(hits)})
