import pytest
from pydantic import ValidationError

from control.actions import (
    ACTION_COSTS,
    Click,
    Evaluate,
    Extract,
    Navigate,
    Screenshot,
    TypeText,
    action_cost,
    known_fields,
    parse_action,
    parse_actions,
)


def test_parse_each_action_type():
    assert parse_action({"type": "navigate", "url": "https://example.com"}) == Navigate(url="https://example.com")
    assert isinstance(parse_action({"type": "click", "selector": "#login"}), Click)
    typed = parse_action({"type": "type", "selector": "#q", "value": "python"})
    assert isinstance(typed, TypeText)
    assert typed.value == "python"
    assert isinstance(parse_action({"type": "screenshot"}), Screenshot)
    extract = parse_action({"type": "extract", "selector": "a", "attribute": "href"})
    assert isinstance(extract, Extract)
    assert extract.attribute == "href"
    assert isinstance(parse_action({"type": "evaluate", "code": "document.title"}), Evaluate)


def test_target_alias():
    assert parse_action({"type": "navigate", "target": "https://example.com"}).url == "https://example.com"
    assert parse_action({"type": "click", "target": "#btn"}).selector == "#btn"


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "hover", "selector": "#x"},
        {"selector": "#x"},
        {"type": "click"},
        {"type": "click", "selector": ""},
        {"type": "type", "selector": "#q"},
        {"type": "navigate"},
        {"type": "screenshot", "full_page": True},
        {"type": "evaluate", "code": ""},
    ],
)
def test_malformed_actions_rejected(payload):
    with pytest.raises(ValidationError):
        parse_action(payload)


def test_actions_are_immutable():
    action = Click(selector="#a")
    with pytest.raises(ValidationError):
        action.selector = "#b"


def test_parse_actions():
    actions = parse_actions([{"type": "navigate", "url": "https://example.com"}, {"type": "screenshot"}])
    assert [a.type for a in actions] == ["navigate", "screenshot"]


def test_costs_cover_every_action():
    assert ACTION_COSTS == {
        "navigate": 10,
        "click": 5,
        "type": 5,
        "screenshot": 15,
        "extract": 10,
        "evaluate": 20,
    }
    assert action_cost(Screenshot()) == 15
    assert action_cost(Evaluate(code="1 + 1")) == 20


def test_text_fields():
    assert TypeText(selector="#q", value="hi").text_fields() == {"selector": "#q", "value": "hi"}
    assert Screenshot().text_fields() == {}


def test_known_fields_keeps_declared_keys_only():
    payload = {"type": "navigate", "target": "https://example.com", "description": "open"}
    assert known_fields(payload) == {"type": "navigate", "target": "https://example.com"}
    assert parse_action(known_fields(payload)) == Navigate(url="https://example.com")
    with pytest.raises(ValidationError):
        parse_action(payload)
    assert known_fields({"type": "hover", "selector": "#x"}) == {"type": "hover", "selector": "#x"}
