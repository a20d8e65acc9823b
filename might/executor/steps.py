"""Step interpreter — translates map steps to Playwright calls."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

from playwright.async_api import ElementHandle, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from might.errors import MissingElementError, NavigationError, SelectorTimeoutError, StepError
from might.models.config import RunOptions
from might.models.test_map import (
    ClickStep,
    Coordinate,
    DragStep,
    KeyboardStep,
    MediaStep,
    Step,
    SwipeStep,
    TypeStep,
)
from might.url_utils import resolve_url

logger = logging.getLogger(__name__)

MODIFIER_KEYS = ("Shift", "Control", "Alt", "Meta")

# Intermediate mouse positions for drag/swipe so the pointer path looks natural.
POINTER_STEPS = 15

_NUMBER_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)")
_VIEWPORT_SIZE_RE = re.compile(r"^\s*(\d*)\s*x\s*(\d*)")

_MEDIA_FEATURES = {
    "prefers-color-scheme": ("color_scheme", ("light", "dark", "no-preference")),
    "prefers-reduced-motion": ("reduced_motion", ("reduce", "no-preference")),
}


@dataclass
class StepState:
    """Cross-step state of one test execution on one engine."""

    width: int
    height: int
    selector: Optional[str] = None
    touch: bool = False
    full_page: bool = False


@dataclass(frozen=True)
class ViewportDescriptor:
    width: int
    height: int
    touch: bool = False
    full: bool = False


StepDelta = Union[str, ViewportDescriptor, None]


def parse_viewport(value: str, width: int, height: int) -> ViewportDescriptor:
    """Parse a compact viewport descriptor such as ``390x844tf``.

    ``t`` enables touch, ``f`` enables full-page screenshots; a missing or
    non-numeric width/height keeps the current one.
    """
    match = _VIEWPORT_SIZE_RE.match(value)
    if match:
        if match.group(1):
            width = int(match.group(1))
        if match.group(2):
            height = int(match.group(2))
    return ViewportDescriptor(width=width, height=height, touch="t" in value, full="f" in value)


def _number(value: Coordinate) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    match = _NUMBER_RE.match(value)
    if not match:
        raise ValueError(f"Invalid coordinate: {value!r}")
    return float(match.group(1))


def resolve_coordinate(
    value: Coordinate, viewport_size: int, origin: Optional[float] = None,
) -> float:
    """Resolve a coordinate literal to pixels.

    ``50v`` is 50% of ``viewport_size``; ``10f`` is 10px from ``origin``
    (only allowed when an origin is given); anything else is absolute.
    """
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.endswith("v"):
            return _number(stripped) / 100 * viewport_size
        if stripped.endswith("f"):
            if origin is None:
                raise ValueError(f"Offset coordinate {value!r} needs a selected element")
            return origin + _number(stripped)
    return _number(value)


def parse_chord(value: str) -> list[str]:
    """Split a ``+``-joined key chord; ``++`` is the numpad plus key."""
    return [k for k in value.replace("++", "+NumpadAdd").split("+") if k]


async def _query_all(page: Page, selector: Optional[str]) -> list[ElementHandle]:
    if not selector:
        return []
    return await page.query_selector_all(selector)


async def _query_one(page: Page, selector: Optional[str], action: str) -> ElementHandle:
    if not selector:
        raise MissingElementError(f"{action} requires a selected element")
    elem = await page.query_selector(selector)
    if elem is None:
        raise MissingElementError(f"{action}: no element matches {selector!r}")
    return elem


async def _drag_pointer(page: Page, x0: float, y0: float, x1: float, y1: float) -> None:
    await page.mouse.move(x0, y0)
    await page.mouse.down(button="left")
    await page.mouse.move(x1, y1, steps=POINTER_STEPS)
    await page.mouse.up(button="left")


def _viewport(page: Page, state: StepState) -> tuple[int, int]:
    size = page.viewport_size
    if size:
        return size["width"], size["height"]
    return state.width, state.height


async def _click(page: Page, step: ClickStep, state: StepState, timeout: int) -> None:
    elements = await _query_all(page, state.selector)
    logger.debug("Clicking %d element(s) matching %s", len(elements), state.selector)
    for elem in elements:
        if step.value in ("right", "middle"):
            await elem.click(button=step.value, force=True, timeout=timeout)
        elif state.touch:
            await elem.tap(force=True, timeout=timeout)
        else:
            await elem.click(button="left", force=True, timeout=timeout)
        # park the pointer so hover styles don't leak into the screenshot
        await page.mouse.move(-1, -1)


async def _type(page: Page, step: TypeStep, state: StepState) -> None:
    elements = await _query_all(page, state.selector)
    logger.debug("Typing into %d element(s) matching %s", len(elements), state.selector)
    for elem in elements:
        current = await elem.evaluate("(e) => e.value ?? ''") or ""
        await elem.focus()
        for _ in range(len(current)):
            await page.keyboard.press("Backspace")
        await page.keyboard.type(step.value)
        # the input caret would pollute the screenshot
        await elem.evaluate("(e) => e.blur()")


async def _keyboard(page: Page, step: KeyboardStep, state: StepState) -> None:
    keys = parse_chord(step.value)
    elem = await _query_one(page, state.selector, "keyboard")
    await elem.focus()

    modifiers = [k for k in keys if k in MODIFIER_KEYS]
    logger.debug("Pressing %s on %s", step.value, state.selector)
    for key in modifiers:
        await page.keyboard.down(key)
    for key in keys:
        if key not in MODIFIER_KEYS:
            await page.keyboard.press(key)
    for key in reversed(modifiers):
        await page.keyboard.up(key)

    await elem.evaluate("(e) => e.blur()")


async def _drag(page: Page, step: DragStep, state: StepState) -> None:
    elem = await _query_one(page, state.selector, "drag")
    box = await elem.bounding_box()
    if box is None:
        raise MissingElementError(f"drag: element {state.selector!r} is not visible")
    width, height = _viewport(page, state)
    x0 = box["x"] + box["width"] / 2
    y0 = box["y"] + box["height"] / 2
    x1 = resolve_coordinate(step.value[0], width, origin=x0)
    y1 = resolve_coordinate(step.value[1], height, origin=y0)
    logger.debug("Dragging %s from (%.0f, %.0f) to (%.0f, %.0f)", state.selector, x0, y0, x1, y1)
    await _drag_pointer(page, x0, y0, x1, y1)


async def _swipe(page: Page, step: SwipeStep, state: StepState) -> None:
    width, height = _viewport(page, state)
    x0, y0, x1, y1 = step.value
    points = (
        resolve_coordinate(x0, width),
        resolve_coordinate(y0, height),
        resolve_coordinate(x1, width),
        resolve_coordinate(y1, height),
    )
    logger.debug("Swiping from (%.0f, %.0f) to (%.0f, %.0f)", *points)
    await _drag_pointer(page, *points)


async def _goto(page: Page, target: str, options: RunOptions) -> None:
    timeout = options.step_timeout
    try:
        if target == "back":
            await page.go_back(timeout=timeout)
        elif target == "forward":
            await page.go_forward(timeout=timeout)
        else:
            url = resolve_url(options.url, target)
            logger.debug("Navigating to %s...", url)
            await page.goto(url, timeout=timeout)
    except PlaywrightError as e:
        raise NavigationError(f"goto {target}: {e}") from e


async def _media(page: Page, step: MediaStep) -> None:
    name, _, value = step.value.partition(":")
    feature = _MEDIA_FEATURES.get(name.strip())
    value = value.strip()
    if feature is None or value not in feature[1]:
        logger.warning("Unsupported media feature: %s", step.value)
        return
    await page.emulate_media(**{feature[0]: value})


async def run_step(page: Page, step: Step, state: StepState, options: RunOptions) -> StepDelta:
    """Execute one step and return the change it makes to the execution state.

    Returns a new selector (``wait`` for a selector, ``select``), a
    ``ViewportDescriptor`` (``viewport``) or ``None``.
    """
    timeout = options.step_timeout
    logger.debug("Running step: %s | value=%s | selector=%s", step.action, step.value, state.selector)

    try:
        match step.action:
            case "wait":
                if isinstance(step.value, str):
                    await page.wait_for_selector(step.value, timeout=timeout)
                    return step.value
                await asyncio.sleep(step.value)

            case "select":
                return step.value

            case "click":
                await _click(page, step, state, timeout)

            case "hover":
                for elem in await _query_all(page, state.selector):
                    await elem.hover(force=True, timeout=timeout)

            case "type":
                await _type(page, step, state)

            case "keyboard":
                await _keyboard(page, step, state)

            case "drag":
                await _drag(page, step, state)

            case "swipe":
                await _swipe(page, step, state)

            case "viewport":
                width, height = _viewport(page, state)
                return parse_viewport(step.value, width, height)

            case "goto":
                await _goto(page, step.value, options)

            case "media":
                await _media(page, step)

    except PlaywrightTimeoutError as e:
        raise SelectorTimeoutError(f"{step.action} {step.value}: timed out after {timeout}ms") from e
    except ValueError as e:
        raise StepError(f"{step.action} {step.value}: {e}") from e

    return None
