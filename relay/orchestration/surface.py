from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from relay.core import taxonomy
from relay.core.timeutil import to_iso, zone
from relay.llm.sanitize import sanitize_display_text
from .state import (
    AwaitingNewTargetConfirmation, Confirming, Conflicted, Executing, Idle, OrchestrationState, Result, Selecting,
)


@dataclass(frozen=True)
class CardOption:
    id: str
    title: str
    subtitle: Optional[str] = None
    icon: Optional[str] = None


@dataclass(frozen=True)
class Card:
    kind: str
    title: str = ""
    body: str = ""
    rows: List[Tuple[str, str]] = field(default_factory=list)
    options: List[CardOption] = field(default_factory=list)
    alternatives: List[Tuple[str, str]] = field(default_factory=list)
    actions: Tuple[str, ...] = ()
    tone: str = "neutral"


def _label(dt: datetime, tz_name: str) -> str:
    local = dt.astimezone(zone(tz_name))
    hour = local.hour % 12 or 12
    return f"{local:%a %b} {local.day}, {hour}:{local:%M} {'AM' if local.hour < 12 else 'PM'}"


def present(state: OrchestrationState, default_tz: str = "UTC") -> Card:
    """View model for whatever the orchestrator is showing right now."""
    if isinstance(state, Idle):
        return Card(kind="idle")

    if isinstance(state, Confirming):
        return Card(
            kind="confirm",
            title="Confirm action",
            body=taxonomy.render(state.intent, default_tz),
            rows=taxonomy.formatted_parameters(state.intent, default_tz),
            actions=("confirm", "cancel"),
        )

    if isinstance(state, Selecting):
        req = state.request
        return Card(
            kind="select",
            title=req.prompt,
            options=[CardOption(o.id, sanitize_display_text(o.title), o.subtitle, o.icon) for o in req.options],
            actions=("choose", "cancel"),
        )

    if isinstance(state, Conflicted):
        c = state.conflict
        tz_name = c.original_parameters.get("timezone") or default_tz
        busy = c.conflicting_commitment
        body = (f'This overlaps "{sanitize_display_text(busy.title)}" '
                f"({_label(busy.start, tz_name)} - {_label(busy.end, tz_name)}). Pick another time:")
        return Card(
            kind="conflict",
            title="Schedule conflict",
            body=body,
            alternatives=[(to_iso(t), _label(t, tz_name)) for t in c.suggested_alternatives],
            actions=("choose_alternative", "cancel"),
            tone="warning",
        )

    if isinstance(state, AwaitingNewTargetConfirmation):
        name = sanitize_display_text(state.proposed_name)
        return Card(
            kind="new_target",
            title=f"Add {name}?",
            body=f"I couldn't find '{name}' in your contacts. Add them as a new contact and continue?",
            rows=taxonomy.formatted_parameters(state.draft, default_tz),
            actions=("create_target", "cancel"),
            tone="warning",
        )

    if isinstance(state, Executing):
        return Card(kind="executing", title="Working on it", body=taxonomy.render(state.intent, default_tz),
                    actions=("cancel",))

    if isinstance(state, Result):
        if state.success:
            return Card(kind="result", title="Done", body=state.result.message or "", actions=("dismiss",),
                        tone="success")
        actions = ("retry", "dismiss") if state.retryable else ("dismiss",)
        return Card(kind="result", title="Couldn't complete that", body=state.result.message or "",
                    actions=actions, tone="error")

    raise TypeError(f"unknown state {state!r}")
