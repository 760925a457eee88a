from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, TUESDAY_2PM, fixed_clock
from relay.core.errors import EffectError
from relay.core.types import ActionKind
from relay_exec.conflicts import ConflictDetector, SlotPolicy, overlaps
from relay_exec.store import StateStore

UTC = timezone.utc


def _detector(store, **policy):
    return ConflictDetector(store, SlotPolicy(**policy), clock=fixed_clock)


def test_free_slot_has_no_conflict(tmp_path):
    store = StateStore(tmp_path)
    store.add_commitment("me", "Standup", TUESDAY_2PM, TUESDAY_2PM + timedelta(minutes=30))
    d = _detector(store)
    start = TUESDAY_2PM + timedelta(minutes=30)
    assert d.check("me", ActionKind.SCHEDULE_EVENT, {}, start, timedelta(minutes=60), UTC) is None


def test_other_principals_do_not_conflict(tmp_path):
    store = StateStore(tmp_path)
    store.add_commitment("you", "Standup", TUESDAY_2PM, TUESDAY_2PM + timedelta(minutes=30))
    assert _detector(store).check("me", ActionKind.SCHEDULE_EVENT, {}, TUESDAY_2PM, timedelta(minutes=60), UTC) is None


def test_alternatives_follow_policy_order(tmp_path):
    store = StateStore(tmp_path)
    store.add_commitment("me", "Dentist", TUESDAY_2PM, TUESDAY_2PM + timedelta(minutes=30))
    params = {"targetId": "u1", "startTime": "2030-03-05T14:00:00Z", "duration": 60}
    c = _detector(store).check("me", ActionKind.SCHEDULE_EVENT, params, TUESDAY_2PM, timedelta(minutes=60), UTC)
    assert c is not None
    assert c.suggested_alternatives == [
        datetime(2030, 3, 5, 14, 30, tzinfo=UTC),
        datetime(2030, 3, 6, 14, 0, tzinfo=UTC),
        datetime(2030, 3, 6, 9, 0, tzinfo=UTC),
    ]
    assert c.original_parameters == params
    assert c.conflicting_commitment.title == "Dentist"


def test_alternatives_never_overlap_and_stay_in_future(tmp_path):
    store = StateStore(tmp_path)
    day = datetime(2030, 3, 4, 9, 0, tzinfo=UTC)
    # Monday packed 9:00-16:00, Tuesday morning busy
    store.add_commitment("me", "Offsite", day, day + timedelta(hours=7))
    store.add_commitment("me", "Review", day + timedelta(days=1), day + timedelta(days=1, hours=3))
    d = _detector(store, max_alternatives=5)
    c = d.check("me", ActionKind.SCHEDULE_EVENT, {}, NOW, timedelta(minutes=90), UTC)
    assert c is not None and c.suggested_alternatives
    busy = store.commitments_for("me")
    for alt in c.suggested_alternatives:
        assert alt > NOW
        assert not any(overlaps(b, alt, alt + timedelta(minutes=90)) for b in busy)


def test_friday_conflict_skips_weekend(tmp_path):
    store = StateStore(tmp_path)
    friday = datetime(2030, 3, 8, 17, 0, tzinfo=UTC)
    store.add_commitment("me", "Drinks", friday, friday + timedelta(hours=1))
    c = _detector(store).check("me", ActionKind.SCHEDULE_EVENT, {}, friday, timedelta(minutes=60), UTC)
    assert datetime(2030, 3, 11, 9, 0, tzinfo=UTC) in c.suggested_alternatives


def test_no_alternative_is_a_hard_failure(tmp_path):
    store = StateStore(tmp_path)
    tue = datetime(2030, 3, 5, 9, 0, tzinfo=UTC)
    store.add_commitment("me", "A", tue, tue + timedelta(hours=1))
    store.add_commitment("me", "B", tue + timedelta(days=1), tue + timedelta(days=1, hours=1))
    d = _detector(store, working_start_hour=9, working_end_hour=10, lookahead_days=0)
    with pytest.raises(EffectError):
        d.check("me", ActionKind.SCHEDULE_EVENT, {}, tue, timedelta(minutes=60), UTC)


def test_cancelled_commitments_are_ignored(tmp_path):
    store = StateStore(tmp_path)
    c = store.add_commitment("me", "Old", TUESDAY_2PM, TUESDAY_2PM + timedelta(hours=1))
    items = store._load("commitments")
    items[0]["status"] = "cancelled"
    store._save("commitments", items)
    assert store.commitments_for("me", include_cancelled=True)[0].id == c.id
    assert _detector(store).overlapping("me", TUESDAY_2PM, TUESDAY_2PM + timedelta(hours=1)) == []
