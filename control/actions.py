"""Typed browser actions and their credit costs.

An action is one of six pydantic models discriminated on ``type``.  Parsing an
incoming payload with :func:`parse_action` is the validation step: unknown
action types, missing parameters and unexpected fields are rejected before the
action is ever screened or executed.
"""
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter


class _Action(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    def text_fields(self) -> Dict[str, str]:
        """Free-form parameters that must pass the injection screen."""
        return {}


class Navigate(_Action):
    type: Literal["navigate"] = "navigate"
    url: str = Field(min_length=1, validation_alias=AliasChoices("url", "target"))

    def text_fields(self) -> Dict[str, str]:
        return {"url": self.url}


class Click(_Action):
    type: Literal["click"] = "click"
    selector: str = Field(min_length=1, validation_alias=AliasChoices("selector", "target"))

    def text_fields(self) -> Dict[str, str]:
        return {"selector": self.selector}


class TypeText(_Action):
    type: Literal["type"] = "type"
    selector: str = Field(min_length=1, validation_alias=AliasChoices("selector", "target"))
    value: str = Field(min_length=1)

    def text_fields(self) -> Dict[str, str]:
        return {"selector": self.selector, "value": self.value}


class Screenshot(_Action):
    type: Literal["screenshot"] = "screenshot"


class Extract(_Action):
    type: Literal["extract"] = "extract"
    selector: str = Field(min_length=1, validation_alias=AliasChoices("selector", "target"))
    attribute: Optional[str] = None

    def text_fields(self) -> Dict[str, str]:
        fields = {"selector": self.selector}
        if self.attribute:
            fields["attribute"] = self.attribute
        return fields


class Evaluate(_Action):
    type: Literal["evaluate"] = "evaluate"
    code: str = Field(min_length=1)

    def text_fields(self) -> Dict[str, str]:
        return {"code": self.code}


Action = Annotated[
    Union[Navigate, Click, TypeText, Screenshot, Extract, Evaluate],
    Field(discriminator="type"),
]

ACTION_MODELS: Dict[str, type] = {
    model.model_fields["type"].default: model
    for model in (Navigate, Click, TypeText, Screenshot, Extract, Evaluate)
}

ACTION_COSTS: Dict[str, int] = {
    "navigate": 10,
    "click": 5,
    "type": 5,
    "screenshot": 15,
    "extract": 10,
    "evaluate": 20,
}

_adapter: TypeAdapter = TypeAdapter(Action)
_list_adapter: TypeAdapter = TypeAdapter(List[Action])


def parse_action(payload: Dict[str, Any]) -> Action:
    """Validate ``payload`` into a typed action.

    Raises
    ------
    pydantic.ValidationError
        If the type is unknown or the parameters are malformed.
    """
    return _adapter.validate_python(payload)


def known_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys the payload's action type does not declare.

    Unknown types pass through unchanged so :func:`parse_action` still
    rejects them.
    """
    kind = payload.get("type")
    model = ACTION_MODELS.get(kind) if isinstance(kind, str) else None
    if model is None:
        return payload
    return {k: v for k, v in payload.items() if k in model.model_fields or k == "target"}


def parse_actions(payload: List[Dict[str, Any]]) -> List[Action]:
    return _list_adapter.validate_python(payload)


def action_cost(action: Action) -> int:
    return ACTION_COSTS[action.type]
