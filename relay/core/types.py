from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .errors import ParameterError
from .timeutil import parse_iso, to_iso


class ActionKind(str, Enum):
    SCHEDULE_EVENT = "scheduleEvent"
    SET_REMINDER = "setReminder"
    SEND_MESSAGE = "sendMessage"
    SEARCH_HISTORY = "searchHistory"

    @classmethod
    def parse(cls, name: Any) -> "ActionKind":
        if isinstance(name, cls):
            return name
        for kind in cls:
            if kind.value == name:
                return kind
        raise ParameterError(f"Unknown action: {name}")


@dataclass(frozen=True)
class ActionIntent:
    kind: ActionKind
    parameters: Dict[str, Any] = field(default_factory=dict)
    conversation_id: Optional[str] = None

    def with_parameters(self, parameters: Dict[str, Any]) -> "ActionIntent":
        return replace(self, parameters=dict(parameters))


class SelectionType(str, Enum):
    TARGET = "target"
    TIME = "time"
    ACTION = "action"
    GENERIC = "generic"


@dataclass(frozen=True)
class SelectionOption:
    id: str
    title: str
    subtitle: Optional[str] = None
    icon: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "subtitle": self.subtitle, "icon": self.icon, "metadata": dict(self.metadata)}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SelectionOption":
        return cls(id=str(d["id"]), title=str(d["title"]), subtitle=d.get("subtitle"), icon=d.get("icon"), metadata=dict(d.get("metadata") or {}))


@dataclass(frozen=True)
class SelectionContext:
    original_action: ActionKind
    original_parameters: Dict[str, Any]


@dataclass(frozen=True)
class SelectionRequest:
    selection_type: SelectionType
    prompt: str
    options: List[SelectionOption]
    context: SelectionContext

    def option(self, option_id: str) -> Optional[SelectionOption]:
        return next((o for o in self.options if o.id == option_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selectionType": self.selection_type.value,
            "prompt": self.prompt,
            "options": [o.to_dict() for o in self.options],
            "context": {
                "originalAction": self.context.original_action.value,
                "originalParameters": dict(self.context.original_parameters),
            },
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SelectionRequest":
        ctx = d.get("context") or {}
        return cls(
            selection_type=SelectionType(d.get("selectionType", "generic")),
            prompt=str(d.get("prompt", "")),
            options=[SelectionOption.from_dict(o) for o in d.get("options") or []],
            context=SelectionContext(
                original_action=ActionKind.parse(ctx.get("originalAction")),
                original_parameters=dict(ctx.get("originalParameters") or {}),
            ),
        )


@dataclass(frozen=True)
class CommitmentRef:
    id: str
    title: str
    start: datetime
    end: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "startTime": to_iso(self.start), "endTime": to_iso(self.end)}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CommitmentRef":
        start = parse_iso(d.get("startTime"))
        end = parse_iso(d.get("endTime"))
        if start is None or end is None:
            raise ValueError("commitment times must be ISO-8601")
        return cls(id=str(d.get("id", "")), title=str(d.get("title", "")), start=start, end=end)


@dataclass(frozen=True)
class ConflictResult:
    conflicting_commitment: CommitmentRef
    suggested_alternatives: List[datetime]
    original_action: ActionKind
    original_parameters: Dict[str, Any]

    def __post_init__(self):
        if not self.suggested_alternatives:
            raise ValueError("a conflict must offer at least one alternative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflictingCommitment": self.conflicting_commitment.to_dict(),
            "suggestedAlternatives": [to_iso(t) for t in self.suggested_alternatives],
            "originalAction": self.original_action.value,
            "originalParameters": dict(self.original_parameters),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ConflictResult":
        alts = [parse_iso(t) for t in d.get("suggestedAlternatives") or []]
        return cls(
            conflicting_commitment=CommitmentRef.from_dict(d.get("conflictingCommitment") or {}),
            suggested_alternatives=[t for t in alts if t is not None],
            original_action=ActionKind.parse(d.get("originalAction")),
            original_parameters=dict(d.get("originalParameters") or {}),
        )


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    action_id: Optional[str] = None
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class FailureKind(str, Enum):
    PARAMETER = "parameter"
    NOT_FOUND = "not_found"
    EXECUTION = "execution"
    TRANSPORT = "transport"
    AUTH = "auth"
    INTERNAL = "internal"
    ABORTED = "aborted"
    # the request may have reached the server; replaying it could run the action twice
    UNKNOWN = "unknown"


RETRYABLE_FAILURES = {FailureKind.EXECUTION, FailureKind.TRANSPORT, FailureKind.INTERNAL}


@dataclass(frozen=True)
class Ready:
    action_id: str
    kind: ActionKind
    parameters: Dict[str, Any]

    def to_result(self) -> ExecutionResult:
        return ExecutionResult(True, self.action_id, "ready", {"parameters": dict(self.parameters)})


@dataclass(frozen=True)
class Success:
    result: ExecutionResult

    @property
    def action_id(self) -> Optional[str]:
        return self.result.action_id

    def to_result(self) -> ExecutionResult:
        return self.result


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str
    action_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_FAILURES

    def to_result(self) -> ExecutionResult:
        return ExecutionResult(False, self.action_id, self.message, self.data)


@dataclass(frozen=True)
class NeedsSelection:
    action_id: str
    request: SelectionRequest

    def to_result(self) -> ExecutionResult:
        return ExecutionResult(False, self.action_id, self.request.prompt, self.request.to_dict())


@dataclass(frozen=True)
class NeedsConflictResolution:
    action_id: str
    conflict: ConflictResult

    def to_result(self) -> ExecutionResult:
        return ExecutionResult(False, self.action_id, "There's a conflict at that time.", self.conflict.to_dict())


Outcome = Union[Ready, Success, Failure, NeedsSelection, NeedsConflictResolution]
