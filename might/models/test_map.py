"""Test map data structures — steps, tests and the map file."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from might.errors import ConfigurationError

# A coordinate literal: absolute pixels, "50v" (viewport percent) or "10f" (element offset).
Coordinate = Union[int, float, str]


class _Step(BaseModel):
    model_config = ConfigDict(frozen=True)


class WaitStep(_Step):
    action: Literal["wait"]
    value: Union[float, str]  # seconds, or a selector to wait for


class SelectStep(_Step):
    action: Literal["select"]
    value: str


class ClickStep(_Step):
    action: Literal["click"]
    value: Optional[Literal["left", "right", "middle"]] = None


class TypeStep(_Step):
    action: Literal["type"]
    value: str


class HoverStep(_Step):
    action: Literal["hover"]
    value: Optional[str] = None


class DragStep(_Step):
    action: Literal["drag"]
    value: tuple[Coordinate, Coordinate]


class SwipeStep(_Step):
    action: Literal["swipe"]
    value: tuple[Coordinate, Coordinate, Coordinate, Coordinate]


class KeyboardStep(_Step):
    action: Literal["keyboard"]
    value: str


class ViewportStep(_Step):
    action: Literal["viewport"]
    value: str


class GotoStep(_Step):
    action: Literal["goto"]
    value: str


class MediaStep(_Step):
    action: Literal["media"]
    value: str


Step = Annotated[
    Union[
        WaitStep, SelectStep, ClickStep, TypeStep, HoverStep, DragStep,
        SwipeStep, KeyboardStep, ViewportStep, GotoStep, MediaStep,
    ],
    Field(discriminator="action"),
]

step_adapter: TypeAdapter[Step] = TypeAdapter(Step)


class TestCase(BaseModel):
    __test__ = False  # not a pytest class

    title: Optional[str] = None
    steps: list[Step] = Field(default_factory=list)

    def display_name(self, url: str | None = None) -> str:
        """Title, or a readable rendering of the steps for untitled tests."""
        return self.title or steps_to_string(self.steps, pretty=True, url=url).strip()


class TestMap(BaseModel):
    __test__ = False

    data: list[TestCase] = Field(default_factory=list)

    @classmethod
    def load(cls, path: str | Path) -> "TestMap":
        """Load a map file (``{"data": [...]}`` or a bare list of tests)."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Unable to load map file: {path}")
        try:
            with open(path) as f:
                raw = json.load(f)
            if isinstance(raw, list):
                raw = {"data": raw}
            return cls(**raw)
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            raise ConfigurationError(f"Map file {path} is corrupted: {e}") from e

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)


def _serialize_value(value) -> str:
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_serialize_value(v) for v in value) + "]"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return "" if value is None else str(value)


def _pretty_step(step: Step, url: str | None) -> str:
    match step.action:
        case "wait":
            if isinstance(step.value, str):
                return f"Wait for {step.value}"
            return f"Wait {_serialize_value(step.value)}s"
        case "select":
            return f"Select {step.value}"
        case "click":
            return "Right click" if step.value == "right" else (
                "Middle click" if step.value == "middle" else "Click")
        case "type":
            return f"Type {step.value}"
        case "hover":
            return "Hover"
        case "drag":
            return f"Drag to {_serialize_value(step.value[0])}, {_serialize_value(step.value[1])}"
        case "swipe":
            x0, y0, x1, y1 = (_serialize_value(v) for v in step.value)
            return f"Swipe from {x0}, {y0} to {x1}, {y1}"
        case "keyboard":
            return f"Press {step.value}"
        case "viewport":
            return f"Viewport {step.value}"
        case "goto":
            target = step.value
            if url and target.startswith(url):
                target = target[len(url):] or "/"
            return f"Go to {target}"
        case "media":
            return f"Media {step.value}"


def steps_to_string(steps: list[Step], pretty: bool = False, url: str | None = None) -> str:
    """Render steps as text.

    The canonical form (``pretty=False``) is what baseline hashes are built
    from, so it must only change when a step's action or value changes.
    """
    if pretty:
        return " → ".join(_pretty_step(s, url) for s in steps)
    return "\n".join(f"{s.action}:{_serialize_value(s.value)}" for s in steps)
