"""Tests for test map models and step rendering."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from might.errors import ConfigurationError
from might.models.test_map import (
    ClickStep,
    DragStep,
    TestCase,
    TestMap,
    WaitStep,
    step_adapter,
    steps_to_string,
)


def _steps(*pairs):
    return [step_adapter.validate_python({"action": a, "value": v}) for a, v in pairs]


class TestSteps:
    """Tests for the step union."""

    def test_discriminates_on_action(self):
        step = step_adapter.validate_python({"action": "drag", "value": ["50v", 10]})
        assert isinstance(step, DragStep)
        assert step.value == ("50v", 10)

    def test_wait_keeps_numbers_and_selectors_apart(self):
        assert step_adapter.validate_python({"action": "wait", "value": 2}).value == 2.0
        assert step_adapter.validate_python({"action": "wait", "value": ".box"}).value == ".box"

    def test_click_value_optional(self):
        step = step_adapter.validate_python({"action": "click"})
        assert isinstance(step, ClickStep)
        assert step.value is None

    def test_unknown_action_rejected(self):
        with pytest.raises(ValidationError):
            step_adapter.validate_python({"action": "scroll", "value": 10})

    def test_bad_click_button_rejected(self):
        with pytest.raises(ValidationError):
            step_adapter.validate_python({"action": "click", "value": "double"})

    def test_swipe_needs_four_coordinates(self):
        with pytest.raises(ValidationError):
            step_adapter.validate_python({"action": "swipe", "value": [0, 0, 10]})

    def test_steps_are_frozen(self):
        step = WaitStep(action="wait", value=1)
        with pytest.raises(ValidationError):
            step.value = 2


class TestStepsToString:
    """Tests for the canonical and pretty step renderings."""

    def test_canonical(self):
        steps = _steps(
            ("wait", 2), ("select", "#menu"), ("click", None),
            ("drag", [100, "50v"]), ("viewport", "390x844t"),
        )
        assert steps_to_string(steps) == (
            "wait:2\nselect:#menu\nclick:\ndrag:[100,50v]\nviewport:390x844t"
        )

    def test_canonical_is_stable_for_equal_values(self):
        """Integer and integer-valued float waits render identically."""
        assert steps_to_string(_steps(("wait", 2))) == steps_to_string(_steps(("wait", 2.0)))

    def test_canonical_changes_with_values(self):
        assert steps_to_string(_steps(("type", "a"))) != steps_to_string(_steps(("type", "b")))

    def test_pretty(self):
        steps = _steps(
            ("wait", 1.5), ("wait", ".loaded"), ("select", "input"),
            ("click", "right"), ("type", "hello"), ("hover", None),
        )
        assert steps_to_string(steps, pretty=True) == (
            "Wait 1.5s → Wait for .loaded → Select input → Right click → Type hello → Hover"
        )

    def test_pretty_gestures(self):
        steps = _steps(
            ("drag", ["10f", 20]), ("swipe", [0, "50v", 100, "50v"]),
            ("keyboard", "Control+a"), ("media", "prefers-color-scheme: dark"),
        )
        assert steps_to_string(steps, pretty=True) == (
            "Drag to 10f, 20 → Swipe from 0, 50v to 100, 50v → Press Control+a"
            " → Media prefers-color-scheme: dark"
        )

    def test_pretty_strips_base_url(self):
        steps = _steps(("goto", "http://localhost:8080/about"), ("goto", "http://localhost:8080"))
        assert steps_to_string(steps, pretty=True, url="http://localhost:8080") == (
            "Go to /about → Go to /"
        )


class TestTestCase:
    """Tests for TestCase model."""

    def test_display_name_prefers_title(self):
        test = TestCase(title="Home", steps=_steps(("wait", 1)))
        assert test.display_name() == "Home"

    def test_display_name_renders_untitled_steps(self):
        test = TestCase(steps=_steps(("select", "a"), ("click", None)))
        assert test.display_name() == "Select a → Click"


class TestTestMap:
    """Tests for loading and saving map files."""

    def test_load_wrapped(self, temp_map_file: Path):
        test_map = TestMap.load(temp_map_file)
        assert len(test_map.data) == 3
        assert test_map.data[0].title == "Home"
        assert test_map.data[2].title is None

    def test_load_bare_list(self, tmp_path: Path):
        path = tmp_path / "might.map.json"
        path.write_text(json.dumps([{"title": "A", "steps": [{"action": "wait", "value": 1}]}]))
        test_map = TestMap.load(path)
        assert test_map.data[0].title == "A"
        assert isinstance(test_map.data[0].steps[0], WaitStep)

    def test_save_and_load(self, test_map: TestMap, tmp_path: Path):
        path = tmp_path / "out.json"
        test_map.save(path)
        assert TestMap.load(path) == test_map

    def test_load_missing(self, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="Unable to load map file"):
            TestMap.load(tmp_path / "missing.json")

    def test_load_corrupted(self, tmp_path: Path):
        path = tmp_path / "might.map.json"
        path.write_text(json.dumps({"data": [{"steps": [{"action": "fly"}]}]}))
        with pytest.raises(ConfigurationError, match="corrupted"):
            TestMap.load(path)
