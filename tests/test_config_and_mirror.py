from datetime import timedelta

import pytest

from conftest import TUESDAY_2PM, _cfg, fixed_clock
from relay.config import load_config
from relay.core.errors import EffectError
from relay.core.timeutil import to_iso
from relay.core.types import ActionKind, Success
from relay_exec.gcal_writer import GoogleCalendarMirror, event_body
from relay_exec.google_oauth import get_creds
from relay_exec.service import build_service


def test_load_config_reads_env(monkeypatch):
    monkeypatch.setenv("RELAY_MAX_ROUNDS", "4")
    monkeypatch.setenv("RELAY_RESULT_DISMISS_S", "2.5")
    monkeypatch.setenv("RELAY_GCAL_SYNC", "yes")
    monkeypatch.setenv("RELAY_CALL_TIMEOUT_S", "soon")
    monkeypatch.setenv("RELAY_LOG_LEVEL", "debug")
    cfg = load_config()
    assert cfg.max_rounds == 4
    assert cfg.result_dismiss_s == 2.5
    assert cfg.gcal_sync is True
    assert cfg.call_timeout_s == 15.0
    assert cfg.log_level == "DEBUG"


class _FakeEvents:
    def __init__(self, sink):
        self.sink = sink

    def insert(self, calendarId, body):
        self.sink.append((calendarId, body))
        return self

    def execute(self):
        return {"id": "g_1"}


class _FakeCalendar:
    def __init__(self):
        self.inserted = []

    def events(self):
        return _FakeEvents(self.inserted)


def test_mirror_inserts_committed_event(tmp_path, store, people):
    cal = _FakeCalendar()
    mirror = GoogleCalendarMirror(client_secret="unused", token_path="unused", calendar_id="team",
                                  service_factory=lambda: cal)
    svc = build_service(_cfg(tmp_path), calendar_mirror=mirror, clock=fixed_clock)
    out = svc.commit(ActionKind.SCHEDULE_EVENT, {"targetId": "u_priya", "startTime": to_iso(TUESDAY_2PM)}, "me")
    assert isinstance(out, Success)
    assert out.result.data["calendarSync"] == "synced"
    calendar_id, body = cal.inserted[0]
    assert calendar_id == "team"
    assert body["summary"] == "Event with Priya Natarajan"
    assert body["start"] == {"dateTime": "2030-03-05T14:00:00Z"}
    assert body["end"] == {"dateTime": to_iso(TUESDAY_2PM + timedelta(minutes=30))}


def test_event_body_attendees(store):
    ev = store.add_commitment("me", "Sync", TUESDAY_2PM, TUESDAY_2PM + timedelta(hours=1))
    body = event_body(ev, "", attendees=["a@example.com"])
    assert body["attendees"] == [{"email": "a@example.com"}]
    assert body["extendedProperties"]["private"]["relayEventId"] == ev.id


def test_server_never_starts_consent_flow(tmp_path):
    with pytest.raises(EffectError):
        get_creds(scopes=["x"], client_secret_path=str(tmp_path / "cs.json"), token_path=str(tmp_path / "tok.json"))
