from __future__ import annotations
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .types import (
    ActionKind, ConflictResult, ExecutionResult, Failure, FailureKind, NeedsConflictResolution,
    NeedsSelection, Outcome, Ready, SelectionRequest, Success,
)


class ActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    principal_id: str = Field(alias="principalId", min_length=1)
    action_kind: ActionKind = Field(alias="actionKind")
    parameters: Dict[str, Any] = Field(default_factory=dict)
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")


class ReadyWire(BaseModel):
    outcome: Literal["ready"] = "ready"
    actionId: str
    actionKind: ActionKind
    parameters: Dict[str, Any] = Field(default_factory=dict)


class SuccessWire(BaseModel):
    outcome: Literal["success"] = "success"
    actionId: Optional[str] = None
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class FailureWire(BaseModel):
    outcome: Literal["failure"] = "failure"
    kind: FailureKind
    message: str
    actionId: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class SelectionWire(BaseModel):
    outcome: Literal["needs_selection"] = "needs_selection"
    actionId: str
    selection: Dict[str, Any]


class ConflictWire(BaseModel):
    outcome: Literal["needs_conflict_resolution"] = "needs_conflict_resolution"
    actionId: str
    conflict: Dict[str, Any]


OutcomeWire = Annotated[
    Union[ReadyWire, SuccessWire, FailureWire, SelectionWire, ConflictWire],
    Field(discriminator="outcome"),
]
_outcome_adapter = TypeAdapter(OutcomeWire)


def outcome_to_wire(outcome: Outcome) -> Dict[str, Any]:
    if isinstance(outcome, Ready):
        m = ReadyWire(actionId=outcome.action_id, actionKind=outcome.kind, parameters=outcome.parameters)
    elif isinstance(outcome, Success):
        r = outcome.result
        m = SuccessWire(actionId=r.action_id, message=r.message, data=r.data)
    elif isinstance(outcome, Failure):
        m = FailureWire(kind=outcome.kind, message=outcome.message, actionId=outcome.action_id, data=outcome.data)
    elif isinstance(outcome, NeedsSelection):
        m = SelectionWire(actionId=outcome.action_id, selection=outcome.request.to_dict())
    elif isinstance(outcome, NeedsConflictResolution):
        m = ConflictWire(actionId=outcome.action_id, conflict=outcome.conflict.to_dict())
    else:
        raise TypeError(f"not an outcome: {outcome!r}")
    return m.model_dump(mode="json")


def outcome_from_wire(payload: Any) -> Outcome:
    m = _outcome_adapter.validate_python(payload)
    if isinstance(m, ReadyWire):
        return Ready(action_id=m.actionId, kind=m.actionKind, parameters=dict(m.parameters))
    if isinstance(m, SuccessWire):
        return Success(ExecutionResult(True, m.actionId, m.message, m.data))
    if isinstance(m, FailureWire):
        return Failure(kind=m.kind, message=m.message, action_id=m.actionId, data=m.data)
    if isinstance(m, SelectionWire):
        return NeedsSelection(action_id=m.actionId, request=SelectionRequest.from_dict(m.selection))
    return NeedsConflictResolution(action_id=m.actionId, conflict=ConflictResult.from_dict(m.conflict))
