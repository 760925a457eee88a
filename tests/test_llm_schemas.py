import pytest
from pydantic import ValidationError

from relay.core.errors import ParameterError
from relay.core.types import ActionIntent, ActionKind
from relay.llm.schemas import parse_turn


def test_plain_reply():
    assert parse_turn({"reply": "  Sure, sounds good. "}) == "Sure, sounds good."


def test_action_turn_becomes_intent():
    out = parse_turn({"reply": "On it", "action": {"name": "setReminder", "parameters": {"reminderText": "x"}}},
                     conversation_id="c9")
    assert out == ActionIntent(ActionKind.SET_REMINDER, {"reminderText": "x"}, "c9")


def test_unknown_action_name():
    with pytest.raises(ParameterError):
        parse_turn({"action": {"name": "orderPizza"}})


def test_empty_turn_rejected():
    with pytest.raises(ValidationError):
        parse_turn({"reply": "   "})
