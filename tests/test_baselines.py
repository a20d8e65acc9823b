"""Tests for baseline identities and the baseline store."""

import hashlib
from pathlib import Path

from might.models.test_map import TestCase, step_adapter, steps_to_string
from might.visual.baselines import BaselineStore, sanitize_filename, screenshot_identity


def _test(title=None, *pairs) -> TestCase:
    return TestCase(
        title=title,
        steps=[step_adapter.validate_python({"action": a, "value": v}) for a, v in pairs],
    )


class TestSanitizeFilename:
    def test_strips_illegal_characters(self):
        assert sanitize_filename('a/b\\c:d*e?f"g<h>i|j') == "abcdefghij"

    def test_strips_trailing_dots_and_spaces(self):
        assert sanitize_filename("name. . ") == "name"

    def test_reserved_names(self):
        assert sanitize_filename("..") == ""
        assert sanitize_filename("CON") == ""

    def test_iso_timestamp(self):
        assert sanitize_filename("might.error.2024-01-01T10:20:30.png") == (
            "might.error.2024-01-01T102030.png"
        )


class TestScreenshotIdentity:
    """Tests for screenshot_identity()."""

    def test_hash_of_canonical_steps(self):
        test = _test("Home", ("wait", 1), ("click", None))
        expected = hashlib.md5(steps_to_string(test.steps).encode("utf-8")).hexdigest()
        assert screenshot_identity(test) == expected

    def test_same_steps_same_identity(self):
        """Identity ignores the title unless title-based naming is on."""
        assert screenshot_identity(_test("A", ("wait", 1))) == screenshot_identity(_test("B", ("wait", 1)))

    def test_step_change_changes_identity(self):
        assert screenshot_identity(_test("A", ("wait", 1))) != screenshot_identity(_test("A", ("wait", 2)))

    def test_title_based(self):
        test = _test("Home: dark/mobile", ("wait", 1))
        assert screenshot_identity(test, title_based=True) == "Home darkmobile"

    def test_title_based_untitled_falls_back_to_hash(self):
        test = _test(None, ("wait", 1))
        assert screenshot_identity(test, title_based=True) == screenshot_identity(test)


class TestBaselineStore:
    """Tests for BaselineStore."""

    def _seed(self, directory: Path, names) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        for name in names:
            (directory / name).write_bytes(b"png")

    def test_scan_creates_directory(self, tmp_path: Path):
        store = BaselineStore(tmp_path / "__might__")
        assert store.scan() == 0
        assert (tmp_path / "__might__").is_dir()

    def test_path_for(self, tmp_path: Path):
        store = BaselineStore(tmp_path)
        assert store.path_for("abc", "webkit") == tmp_path / "abc.webkit.png"

    def test_unused(self, tmp_path: Path):
        """Five baselines on disk, three touched by the run: two are unused."""
        names = [f"t{i}.chromium.png" for i in range(5)]
        self._seed(tmp_path, names + ["notes.txt"])
        store = BaselineStore(tmp_path)

        assert store.scan() == 5
        for name in names[:3]:
            store.mark_used(tmp_path / name)

        assert sorted(p.name for p in store.unused()) == ["t3.chromium.png", "t4.chromium.png"]

    def test_new_baselines_are_not_unused(self, tmp_path: Path):
        store = BaselineStore(tmp_path)
        store.scan()
        store.mark_used(tmp_path / "new.chromium.png")
        assert store.unused() == []

    def test_clean(self, tmp_path: Path):
        self._seed(tmp_path, ["a.chromium.png", "b.chromium.png"])
        store = BaselineStore(tmp_path)
        store.scan()
        store.mark_used(tmp_path / "a.chromium.png")

        removed = store.clean()

        assert removed == [tmp_path / "b.chromium.png"]
        assert (tmp_path / "a.chromium.png").exists()
        assert not (tmp_path / "b.chromium.png").exists()
        assert store.unused() == []

    def test_stores_are_independent(self, tmp_path: Path):
        self._seed(tmp_path, ["a.chromium.png"])
        first, second = BaselineStore(tmp_path), BaselineStore(tmp_path)
        first.scan()
        second.scan()
        first.mark_used(tmp_path / "a.chromium.png")
        assert first.unused() == []
        assert second.unused() == [tmp_path / "a.chromium.png"]
