from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Union

from relay.core.types import (
    RETRYABLE_FAILURES, ActionIntent, ConflictResult, ExecutionResult, FailureKind, SelectionRequest,
)


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Selecting:
    request: SelectionRequest
    action_id: Optional[str] = None
    conversation_id: Optional[str] = None


@dataclass(frozen=True)
class Conflicted:
    conflict: ConflictResult
    action_id: Optional[str] = None
    conversation_id: Optional[str] = None


@dataclass(frozen=True)
class AwaitingNewTargetConfirmation:
    proposed_name: str
    draft: ActionIntent
    message: str = ""


@dataclass(frozen=True)
class Confirming:
    intent: ActionIntent


@dataclass(frozen=True)
class Executing:
    intent: ActionIntent
    mode: str = "commit"


@dataclass(frozen=True)
class Result:
    result: ExecutionResult
    failure: Optional[FailureKind] = None

    @property
    def success(self) -> bool:
        return self.result.success

    @property
    def retryable(self) -> bool:
        return self.failure in RETRYABLE_FAILURES


OrchestrationState = Union[Idle, Selecting, Conflicted, AwaitingNewTargetConfirmation, Confirming, Executing, Result]

IDLE = Idle()
