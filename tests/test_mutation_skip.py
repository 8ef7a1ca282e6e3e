"""Tests for the mutation-run collection hook."""
from __future__ import annotations

import pytest
from conftest import pytest_collection_modifyitems


class _Item:
    """Minimal collected-item stand-in."""

    def __init__(self, *keywords: str) -> None:
        self.keywords = dict.fromkeys(keywords, True)
        self.markers: list[pytest.MarkDecorator] = []

    def add_marker(self, marker: pytest.MarkDecorator) -> None:
        self.markers.append(marker)


def test_marked_tests_skipped_during_mutation_run(monkeypatch: pytest.MonkeyPatch) -> None:
    """Only ``mutation_timeout`` tests are skipped while a mutant is under test."""
    monkeypatch.setenv("MUTANT_UNDER_TEST", "pgenvctl.cli.x_main__mutmut_1")
    slow, fast = _Item("mutation_timeout"), _Item()

    pytest_collection_modifyitems(None, [slow, fast])  # type: ignore[arg-type]

    assert [marker.name for marker in slow.markers] == ["skip"]
    assert fast.markers == []


def test_nothing_skipped_outside_mutation_run(monkeypatch: pytest.MonkeyPatch) -> None:
    """Regular runs keep every test."""
    monkeypatch.delenv("MUTANT_UNDER_TEST", raising=False)
    slow = _Item("mutation_timeout")

    pytest_collection_modifyitems(None, [slow])  # type: ignore[arg-type]

    assert slow.markers == []
