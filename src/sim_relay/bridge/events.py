"""Typed events relayed from the kernel to viewers.

Events form a tagged union on the ``type`` field and double as the wire
format: ``to_wire()`` produces exactly the JSON object sent to viewers and
``EVENT_ADAPTER`` validates it back on the viewer side.

Wire shapes:
    {"type": "log", "message": "<text>"}
    {"type": "data", "tick": <number>, "hr": <number>}
    {"type": "log_entry", "message": "<text>"}
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class LogEvent(BaseModel):
    """Unstructured diagnostic text."""

    model_config = ConfigDict(frozen=True, strict=True)

    type: Literal["log"] = "log"
    message: str


class DataEvent(BaseModel):
    """One time-series sample.

    Attributes:
        tick: Simulation time (x axis).
        heart_rate: Sampled value, ``hr`` on the wire.

    """

    model_config = ConfigDict(frozen=True, strict=True, populate_by_name=True)

    type: Literal["data"] = "data"
    tick: int | float
    heart_rate: int | float = Field(alias="hr")


class LogEntryEvent(BaseModel):
    """A structured, pre-classified log line."""

    model_config = ConfigDict(frozen=True, strict=True)

    type: Literal["log_entry"] = "log_entry"
    message: str


Event = Annotated[LogEvent | DataEvent | LogEntryEvent, Field(discriminator="type")]

EVENT_ADAPTER = TypeAdapter(Event)


def to_wire(event: Event) -> dict[str, Any]:
    """Serialize an event to its wire dict."""
    return event.model_dump(by_alias=True)
