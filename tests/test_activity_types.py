"""Tests for activity type parsing and capture eligibility."""

from __future__ import annotations

import pytest

from territory_capture.activity_types import (
    ActivityType,
    ELIGIBLE_ACTIVITIES,
    is_capture_eligible,
    normalize_activity_type,
    parse_activity_type,
)


def test_normalize_strips_and_lowercases() -> None:
    assert normalize_activity_type("  Running ") == "running"
    assert normalize_activity_type("") is None
    assert normalize_activity_type(None) is None
    assert normalize_activity_type(ActivityType.GOLF) == "golf"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("running", ActivityType.RUNNING),
        ("HIKING", ActivityType.HIKING),
        ("Löppass", ActivityType.RUNNING),
        ("Golfrunda", ActivityType.GOLF),
        ("Bestiga berg", ActivityType.HIKING),
        ("Skidor", ActivityType.SKIING),
        ("Promenad", ActivityType.WALKING),
        (ActivityType.SKIING, ActivityType.SKIING),
    ],
)
def test_parse_known_labels(raw, expected) -> None:
    assert parse_activity_type(raw) is expected


def test_parse_unknown_label_is_none() -> None:
    assert parse_activity_type("underwater basket weaving") is None
    assert parse_activity_type(None) is None


def test_eligible_set_is_fixed() -> None:
    assert ELIGIBLE_ACTIVITIES == {
        ActivityType.RUNNING,
        ActivityType.GOLF,
        ActivityType.HIKING,
        ActivityType.SKIING,
    }
    assert is_capture_eligible("Löppass")
    assert not is_capture_eligible(ActivityType.WALKING)
    assert not is_capture_eligible("gym")
    assert not is_capture_eligible(None)
