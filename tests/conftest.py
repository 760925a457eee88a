from datetime import datetime, timedelta, timezone

import pytest

from relay.config import Config
from relay_exec.service import build_service

# Monday
NOW = datetime(2030, 3, 4, 10, 0, tzinfo=timezone.utc)
TUESDAY_2PM = datetime(2030, 3, 5, 14, 0, tzinfo=timezone.utc)


def fixed_clock():
    return NOW


def _cfg(tmp_path, **overrides) -> Config:
    base = dict(
        artifacts_dir=str(tmp_path),
        exec_secret="secret",
        default_tz="UTC",
        result_dismiss_s=5.0,
        call_timeout_s=15.0,
        max_rounds=2,
    )
    base.update(overrides)
    return Config(**base)


@pytest.fixture
def cfg(tmp_path):
    return _cfg(tmp_path)


@pytest.fixture
def service(cfg):
    return build_service(cfg, clock=fixed_clock)


@pytest.fixture
def store(service):
    return service.store


@pytest.fixture
def people(store):
    """Principal ``me`` with two Sams, one Priya, and chats with Sam Carter and Priya."""
    sam_c = store.add_contact("me", "Sam Carter", email="sam.c@example.com", contact_id="u_sam1")
    sam_l = store.add_contact("me", "Sam Lee", email="sam.l@example.com", contact_id="u_sam2")
    priya = store.add_contact("me", "Priya Natarajan", contact_id="u_priya")
    store.add_contact("other", "Sam Other", contact_id="u_sam3")
    chat_sam = store.add_chat(["me", "u_sam1"], chat_id="chat_sam1")
    chat_priya = store.add_chat(["me", "u_priya"], chat_id="chat_priya")
    store.add_chat(["other", "u_sam3"], chat_id="chat_other")
    return {"sam_c": sam_c, "sam_l": sam_l, "priya": priya, "chat_sam": chat_sam, "chat_priya": chat_priya}


@pytest.fixture
def busy_tuesday(store, people):
    return store.add_commitment("me", "Dentist", TUESDAY_2PM, TUESDAY_2PM + timedelta(minutes=30), created_by="user")
