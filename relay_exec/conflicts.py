from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Callable, Dict, Iterator, List, Optional

from relay.core.errors import EffectError
from relay.core.timeutil import utcnow
from relay.core.types import ActionKind, CommitmentRef, ConflictResult
from .store import Commitment, StateStore


@dataclass(frozen=True)
class SlotPolicy:
    working_start_hour: int = 9
    working_end_hour: int = 18
    step_min: int = 30
    max_alternatives: int = 3
    lookahead_days: int = 7


def overlaps(c: Commitment, start: datetime, end: datetime) -> bool:
    return c.start < end and c.end > start


class ConflictDetector:
    def __init__(self, store: StateStore, policy: Optional[SlotPolicy] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.policy = policy or SlotPolicy()
        self.clock = clock

    def overlapping(self, principal_id: str, start: datetime, end: datetime) -> List[Commitment]:
        if start >= end:
            raise EffectError("End time must be after start time.")
        hits = [c for c in self.store.commitments_for(principal_id) if overlaps(c, start, end)]
        return sorted(hits, key=lambda c: c.start)

    def check(self, principal_id: str, kind: ActionKind, parameters: Dict[str, Any], start: datetime,
              duration: timedelta, tz: tzinfo) -> Optional[ConflictResult]:
        """None when the slot is free; a ConflictResult with alternatives otherwise.

        Raises EffectError when the slot is taken and nothing else is free.
        """
        hits = self.overlapping(principal_id, start, start + duration)
        if not hits:
            return None
        alternatives = self.alternatives(principal_id, start, duration, tz)
        if not alternatives:
            raise EffectError("No available times in the next week. Please choose a time manually.")
        first = hits[0]
        return ConflictResult(
            conflicting_commitment=CommitmentRef(first.id, first.title, first.start, first.end),
            suggested_alternatives=alternatives,
            original_action=kind,
            original_parameters=dict(parameters),
        )

    def alternatives(self, principal_id: str, start: datetime, duration: timedelta, tz: tzinfo) -> List[datetime]:
        busy = self.store.commitments_for(principal_id)
        now = self.clock()
        limit = max(1, self.policy.max_alternatives)

        def free(s: datetime) -> bool:
            e = s + duration
            return s > now and not any(overlaps(c, s, e) for c in busy)

        local = start.astimezone(tz)
        picks: List[datetime] = []

        def take(s: Optional[datetime]):
            if s is not None and len(picks) < limit and all(s != p for p in picks):
                picks.append(s)

        # same day, later
        take(next((s for s in self._day_slots(local.date(), tz, duration, after=local) if free(s)), None))
        # same time tomorrow
        tomorrow = datetime.combine(local.date() + timedelta(days=1), local.timetz().replace(tzinfo=None), tzinfo=tz)
        take(tomorrow if free(tomorrow) else None)
        # following business day
        nxt = _next_business_day(local.date())
        take(next((s for s in self._day_slots(nxt, tz, duration) if free(s)), None))

        if not picks:
            for offset in range(self.policy.lookahead_days + 1):
                day = local.date() + timedelta(days=offset)
                found = next((s for s in self._day_slots(day, tz, duration, after=local) if free(s)), None)
                if found is not None:
                    take(found)
                    break
        return picks

    def _day_slots(self, day: date, tz: tzinfo, duration: timedelta, after: Optional[datetime] = None) -> Iterator[datetime]:
        step = timedelta(minutes=max(5, self.policy.step_min))
        opens = datetime.combine(day, time(self.policy.working_start_hour), tzinfo=tz)
        closes = datetime.combine(day, time(0), tzinfo=tz) + timedelta(hours=self.policy.working_end_hour)
        s = opens
        if after is not None:
            while s <= after:
                s += step
        while s + duration <= closes:
            yield s
            s += step


def _next_business_day(d: date) -> date:
    d += timedelta(days=1)
    while d.weekday() >= 5:
        d += timedelta(days=1)
    return d
