from __future__ import annotations
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import structlog

from relay.config import Config
from relay.core import taxonomy
from relay.core.errors import AuditError, AuthError, EffectError, ParameterError, TargetNotFoundError
from relay.core.timeutil import parse_iso, utcnow, zone
from relay.core.types import (
    ActionKind,
    ExecutionResult,
    Failure,
    FailureKind,
    NeedsConflictResolution,
    NeedsSelection,
    Outcome,
    Ready,
    Success,
)
from relay.log import get_logger
from .audit_log import AuditLog, AuditLogEntry, AuditStatus
from .conflicts import ConflictDetector, SlotPolicy
from .directory import TargetDirectory, build_selection
from .effects import CalendarMirror, Effects, SlotTaken, validate
from .gcal_writer import GoogleCalendarMirror
from .store import StateStore

log = get_logger("service")

OUTCOME_TAGS = {
    Ready: "ready",
    Success: "success",
    Failure: "failure",
    NeedsSelection: "needs_selection",
    NeedsConflictResolution: "needs_conflict_resolution",
}


class ExecutionService:
    """Validates, disambiguates and executes actions for one principal at a time.

    ``resolve`` never touches backing state: it either asks for more input or
    returns ``Ready`` with normalized parameters. ``commit`` runs the effect.
    Both write a ``pending`` audit entry before doing anything and always move
    it to ``executed`` or ``failed``.
    """

    def __init__(self, audit: AuditLog, store: StateStore, directory: TargetDirectory, detector: ConflictDetector,
                 effects: Effects, *, default_tz: str = "UTC", clock: Callable[[], datetime] = utcnow):
        self.audit = audit
        self.store = store
        self.directory = directory
        self.detector = detector
        self.effects = effects
        self.default_tz = default_tz
        self.clock = clock

    # entry points

    def resolve(self, kind: ActionKind | str, parameters: Dict[str, Any], principal_id: str,
                conversation_id: Optional[str] = None) -> Outcome:
        return self._run("resolve", kind, parameters, principal_id, conversation_id)

    def commit(self, kind: ActionKind | str, parameters: Dict[str, Any], principal_id: str,
               conversation_id: Optional[str] = None) -> Outcome:
        return self._run("commit", kind, parameters, principal_id, conversation_id)

    def _run(self, mode: str, kind: ActionKind | str, parameters: Dict[str, Any], principal_id: str,
             conversation_id: Optional[str]) -> Outcome:
        if not (principal_id or "").strip():
            raise AuthError("principal required")
        parameters = dict(parameters or {})
        raw_kind = kind.value if isinstance(kind, ActionKind) else str(kind)
        with structlog.contextvars.bound_contextvars(principal=principal_id, action=raw_kind, mode=mode):
            try:
                action_id = self.audit.append(AuditLogEntry(
                    principal_id=principal_id, action_kind=raw_kind, parameters=parameters, mode=mode,
                    conversation_id=conversation_id,
                ))
            except AuditError as e:
                log.error("audit_unavailable", error=str(e))
                return Failure(FailureKind.INTERNAL, "Couldn't record the action. Nothing was done.")
            step = self._resolve if mode == "resolve" else self._commit
            outcome = self._guarded(action_id, step, raw_kind, parameters, principal_id)
            log.info(f"{mode}_done", action_id=action_id, outcome=OUTCOME_TAGS[type(outcome)])
            return outcome

    def _guarded(self, action_id: str, step, raw_kind: str, parameters: Dict[str, Any], principal_id: str) -> Outcome:
        try:
            kind = ActionKind.parse(raw_kind)
            outcome = step(action_id, kind, parameters, principal_id)
        except ParameterError as e:
            return self._fail(action_id, FailureKind.PARAMETER, str(e), data={"missing": e.missing} if e.missing else None)
        except TargetNotFoundError as e:
            spec = taxonomy.spec_for(raw_kind)
            return self._fail(action_id, FailureKind.NOT_FOUND, str(e),
                              data={"targetName": e.name, "allowsNewTarget": spec.allows_new_target})
        except SlotTaken as e:
            outcome = NeedsConflictResolution(action_id, e.conflict)
            return self._finish(action_id, AuditStatus.FAILED, "conflict", outcome)
        except EffectError as e:
            return self._fail(action_id, FailureKind.EXECUTION, str(e))
        except Exception as e:
            log.exception("action_crashed", action_id=action_id)
            return self._fail(action_id, FailureKind.EXECUTION, "Something went wrong while doing that.",
                              detail=f"{type(e).__name__}: {e}")
        if isinstance(outcome, Success):
            detail = outcome.result.message
        else:
            detail = OUTCOME_TAGS[type(outcome)]
        return self._finish(action_id, AuditStatus.EXECUTED, detail, outcome)

    def _fail(self, action_id: str, kind: FailureKind, message: str, *, data: Optional[Dict[str, Any]] = None,
              detail: Optional[str] = None) -> Outcome:
        return self._finish(action_id, AuditStatus.FAILED, detail or message, Failure(kind, message, action_id, data))

    def _finish(self, action_id: str, status: AuditStatus, detail: Optional[str], outcome: Outcome) -> Outcome:
        try:
            self.audit.transition(action_id, status, detail)
        except AuditError as e:
            log.error("audit_transition_failed", action_id=action_id, error=str(e))
            return Failure(FailureKind.INTERNAL, "Couldn't record the result of the action.", action_id)
        return outcome

    # steps

    def _resolve(self, action_id: str, kind: ActionKind, original: Dict[str, Any], principal_id: str) -> Outcome:
        params = validate(kind, original, now=self.clock(), default_tz=self.default_tz)
        spec = taxonomy.spec_for(kind)
        if taxonomy.needs_resolution(kind, params):
            name = str(params[spec.identifying])
            matches = self.directory.find(principal_id, name, require_chat=kind == ActionKind.SEND_MESSAGE)
            if not matches:
                raise TargetNotFoundError(name)
            if len(matches) > 1:
                return NeedsSelection(action_id, build_selection(kind, original, matches))
            only = matches[0]
            params[spec.resolved] = only.chat_id if spec.resolved == "chatId" else only.target_id
            params[spec.identifying] = only.display_name
        if spec.scheduling:
            tz = zone(params.get("timezone"), self.default_tz)
            start = parse_iso(params["startTime"], tz)
            conflict = self.detector.check(principal_id, kind, params, start, timedelta(minutes=params["duration"]), tz)
            if conflict is not None:
                return NeedsConflictResolution(action_id, conflict)
        return Ready(action_id, kind, params)

    def _commit(self, action_id: str, kind: ActionKind, original: Dict[str, Any], principal_id: str) -> Outcome:
        params = validate(kind, original, now=self.clock(), default_tz=self.default_tz)
        done = self.effects.run(principal_id, kind, params)
        return Success(ExecutionResult(True, action_id, done.message, done.data))

    # queries

    def audit_entries(self, principal_id: str, *, conversation_id: Optional[str] = None,
                      limit: int = 50) -> List[AuditLogEntry]:
        if conversation_id:
            rows = list(reversed(self.audit.by_conversation(conversation_id, principal_id=principal_id)))
            return rows[:max(0, limit)]
        return self.audit.by_principal(principal_id, limit=limit)

    def audit_entry(self, principal_id: str, action_id: str) -> Optional[AuditLogEntry]:
        e = self.audit.get(action_id)
        if e is None or e.principal_id != principal_id:
            return None
        return e


def build_service(cfg: Config, *, calendar_mirror: Optional[CalendarMirror] = None,
                  clock: Callable[[], datetime] = utcnow) -> ExecutionService:
    root = Path(cfg.artifacts_dir)
    store = StateStore(root / "state")
    policy = SlotPolicy(
        working_start_hour=cfg.working_start_hour,
        working_end_hour=cfg.working_end_hour,
        step_min=cfg.slot_step_min,
        max_alternatives=cfg.max_alternatives,
        lookahead_days=cfg.lookahead_days,
    )
    if calendar_mirror is None and cfg.gcal_sync:
        calendar_mirror = GoogleCalendarMirror(client_secret=cfg.google_client_secret, token_path=cfg.gcal_write_token,
                                               calendar_id=cfg.gcal_calendar_id)
    directory = TargetDirectory(store)
    detector = ConflictDetector(store, policy, clock=clock)
    effects = Effects(store, directory, detector, default_tz=cfg.default_tz, calendar_mirror=calendar_mirror)
    return ExecutionService(AuditLog(root / "audit.jsonl"), store, directory, detector, effects,
                            default_tz=cfg.default_tz, clock=clock)
