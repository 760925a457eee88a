from __future__ import annotations
import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from relay.clients import ExecutionClient, TargetCreator
from relay.config import Config
from relay.core import taxonomy
from relay.core.errors import ParameterError
from relay.core.timeutil import parse_iso, to_iso
from relay.core.types import (
    ActionIntent, ActionKind, ExecutionResult, Failure, FailureKind, NeedsConflictResolution, NeedsSelection,
    Outcome, Ready, Success,
)
from relay.log import get_logger
from .state import (
    IDLE, AwaitingNewTargetConfirmation, Confirming, Conflicted, Executing, Idle, OrchestrationState, Result,
    Selecting,
)

log = get_logger("orchestrator")

Listener = Callable[[OrchestrationState, Optional[str]], None]

CANCELLED = "Action cancelled."
CANCELLED_NEW_TARGET = "Okay, I've cancelled that request."
CONFLICT_NOTICE = "That time overlaps something already on your calendar."
TIMED_OUT = "The request timed out. Please try again."
OUTCOME_UNKNOWN = "I didn't hear back in time, so I can't tell whether that went through. Check before asking again."
TOO_MANY_ROUNDS = "I couldn't pin that down. Please try again with more detail."


class InvalidTransition(RuntimeError):
    """A UI command arrived in a state that does not accept it."""


class Orchestrator:
    """Client-side pipeline for one conversation.

    Holds exactly one live state. Every state entry bumps ``generation``; a
    service response is applied only if the generation it captured is still
    current, so cancelled or superseded calls are dropped on arrival.
    """

    def __init__(self, client: ExecutionClient, target_creator: TargetCreator, cfg: Optional[Config] = None):
        self.client = client
        self.target_creator = target_creator
        self.cfg = cfg or Config()
        self._state: OrchestrationState = IDLE
        self._generation = 0
        self._listeners: List[Listener] = []
        self._dismiss_task: Optional[asyncio.Task] = None
        self._rounds = 0
        self._last_step: Optional[Callable[[], Awaitable[None]]] = None

    @property
    def state(self) -> OrchestrationState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    # transitions

    def _enter(self, state: OrchestrationState, notice: Optional[str] = None) -> int:
        if self._dismiss_task is not None:
            self._dismiss_task.cancel()
            self._dismiss_task = None
        self._generation += 1
        self._state = state
        log.debug("state", state=type(state).__name__, generation=self._generation)
        for listener in list(self._listeners):
            listener(state, notice)
        if isinstance(state, Result) and self.cfg.result_dismiss_s > 0:
            self._dismiss_task = asyncio.get_running_loop().create_task(self._auto_dismiss(self._generation))
        return self._generation

    async def _auto_dismiss(self, generation: int) -> None:
        await asyncio.sleep(self.cfg.result_dismiss_s)
        if generation == self._generation:
            self._dismiss_task = None
            self._enter(IDLE)

    def _expect(self, *kinds) -> None:
        if not isinstance(self._state, kinds):
            names = "/".join(k.__name__ for k in kinds)
            raise InvalidTransition(f"expected {names}, state is {type(self._state).__name__}")

    # inbound proposals

    async def handle_function_call(self, name: str, parameters: Optional[Dict[str, Any]] = None,
                                   conversation_id: Optional[str] = None) -> None:
        try:
            kind = ActionKind.parse(name)
        except ParameterError as e:
            self._enter(Result(ExecutionResult(False, None, str(e)), FailureKind.PARAMETER))
            return
        await self.propose(ActionIntent(kind, dict(parameters or {}), conversation_id))

    async def propose(self, intent: ActionIntent) -> None:
        self._rounds = 0
        if taxonomy.needs_resolution(intent.kind, intent.parameters) or taxonomy.missing_required(intent.kind, intent.parameters):
            await self._call("resolve", intent)
        else:
            self._enter(Confirming(intent))

    # user commands

    async def confirm(self) -> None:
        self._expect(Confirming)
        await self._call("commit", self._state.intent)

    def cancel(self) -> None:
        state = self._state
        if isinstance(state, (Idle, Result)):
            return
        notice = CANCELLED_NEW_TARGET if isinstance(state, AwaitingNewTargetConfirmation) else CANCELLED
        log.info("cancelled", state=type(state).__name__)
        self._enter(IDLE, notice)

    async def choose_option(self, option_id: str) -> None:
        self._expect(Selecting)
        state: Selecting = self._state
        req = state.request
        opt = req.option(option_id)
        if opt is None:
            raise InvalidTransition(f"no option {option_id!r}")
        spec = taxonomy.spec_for(req.context.original_action)
        merged = dict(req.context.original_parameters)
        if spec.resolved:
            merged[spec.resolved] = opt.metadata.get(spec.resolved, opt.id)
        if spec.identifying:
            merged[spec.identifying] = opt.metadata.get("displayName", opt.title)
        intent = ActionIntent(req.context.original_action, merged, state.conversation_id)
        await self._call("resolve", intent)

    async def choose_alternative(self, start: datetime | str) -> None:
        self._expect(Conflicted)
        state: Conflicted = self._state
        when = parse_iso(start)
        if when is None:
            raise InvalidTransition(f"not a time: {start!r}")
        params = dict(state.conflict.original_parameters)
        params["startTime"] = to_iso(when)
        await self._call("commit", ActionIntent(state.conflict.original_action, params, state.conversation_id))

    async def confirm_new_target(self) -> None:
        self._expect(AwaitingNewTargetConfirmation)
        await self._create_target(self._state)

    async def _create_target(self, state: AwaitingNewTargetConfirmation) -> None:
        self._last_step = lambda: self._create_target(state)
        gen = self._enter(Executing(state.draft, "create_target"))
        try:
            target_id = await asyncio.wait_for(self.target_creator.create(state.proposed_name), self.cfg.call_timeout_s)
        except asyncio.TimeoutError:
            if gen == self._generation:
                self._enter(Result(ExecutionResult(False, None, OUTCOME_UNKNOWN), FailureKind.UNKNOWN))
            return
        except Exception as e:
            log.warning("target_create_failed", error=str(e)[:300])
            if gen == self._generation:
                msg = f"Couldn't add {state.proposed_name}. Please try again."
                self._enter(Result(ExecutionResult(False, None, msg), FailureKind.EXECUTION))
            return
        if gen != self._generation:
            return
        spec = taxonomy.spec_for(state.draft.kind)
        params = dict(state.draft.parameters)
        params[spec.resolved or "targetId"] = target_id
        await self._call("commit", state.draft.with_parameters(params))

    async def retry(self) -> None:
        self._expect(Result)
        if not self._state.retryable or self._last_step is None:
            raise InvalidTransition("nothing to retry")
        await self._last_step()

    def dismiss(self) -> None:
        if isinstance(self._state, Result):
            self._enter(IDLE)

    # service calls

    async def _call(self, mode: str, intent: ActionIntent) -> None:
        self._last_step = lambda: self._call(mode, intent)
        gen = self._enter(Executing(intent, mode))
        fn = self.client.resolve if mode == "resolve" else self.client.commit
        try:
            outcome = await asyncio.wait_for(fn(intent.kind, intent.parameters, intent.conversation_id),
                                             self.cfg.call_timeout_s)
        except asyncio.TimeoutError:
            # a commit may still land after we stop waiting
            if mode == "commit":
                outcome = Failure(FailureKind.UNKNOWN, OUTCOME_UNKNOWN)
            else:
                outcome = Failure(FailureKind.TRANSPORT, TIMED_OUT)
        except Exception as e:
            log.exception("client_call_failed", mode=mode)
            outcome = Failure(FailureKind.INTERNAL, f"Something went wrong: {type(e).__name__}")
        if gen != self._generation:
            log.info("stale_response_dropped", mode=mode, generation=gen, current=self._generation)
            return
        self._apply(intent, outcome)

    def _apply(self, intent: ActionIntent, outcome: Outcome) -> None:
        if isinstance(outcome, (NeedsSelection, NeedsConflictResolution)):
            self._rounds += 1
            if self._rounds > self.cfg.max_rounds:
                log.warning("round_limit", rounds=self._rounds, action_id=outcome.action_id)
                self._enter(Result(ExecutionResult(False, outcome.action_id, TOO_MANY_ROUNDS), FailureKind.ABORTED))
                return
        if isinstance(outcome, Ready):
            self._enter(Confirming(ActionIntent(outcome.kind, dict(outcome.parameters), intent.conversation_id)))
        elif isinstance(outcome, Success):
            self._enter(Result(outcome.result))
        elif isinstance(outcome, NeedsSelection):
            self._enter(Selecting(outcome.request, outcome.action_id, intent.conversation_id), outcome.request.prompt)
        elif isinstance(outcome, NeedsConflictResolution):
            self._enter(Conflicted(outcome.conflict, outcome.action_id, intent.conversation_id), CONFLICT_NOTICE)
        elif outcome.kind == FailureKind.NOT_FOUND and (outcome.data or {}).get("allowsNewTarget"):
            name = str((outcome.data or {}).get("targetName") or intent.parameters.get("targetName") or "")
            self._enter(AwaitingNewTargetConfirmation(name, intent, outcome.message), outcome.message)
        else:
            self._enter(Result(outcome.to_result(), outcome.kind))
