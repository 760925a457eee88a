from __future__ import annotations
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, model_validator

from relay.core.types import ActionIntent, ActionKind


class ActionProposalJSON(BaseModel):
    name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class AssistantTurnJSON(BaseModel):
    reply: Optional[str] = None
    action: Optional[ActionProposalJSON] = None
    conversationId: Optional[str] = None

    @model_validator(mode="after")
    def _reply_or_action(self):
        if self.action is None and not (self.reply or "").strip():
            raise ValueError("turn carries neither a reply nor an action")
        return self


def parse_turn(payload: Dict[str, Any], conversation_id: Optional[str] = None) -> Union[str, ActionIntent]:
    """Model output -> plain reply text, or an ActionIntent for the orchestrator.

    Raises ``pydantic.ValidationError`` for malformed turns and
    ``relay.core.errors.ParameterError`` for an unknown action name.
    """
    turn = AssistantTurnJSON.model_validate(payload)
    if turn.action is None:
        return (turn.reply or "").strip()
    return ActionIntent(
        kind=ActionKind.parse(turn.action.name),
        parameters=dict(turn.action.parameters),
        conversation_id=turn.conversationId or conversation_id,
    )
