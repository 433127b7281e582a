"""Tests for the repository filtering pipeline."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from config import OwnerType
from errors import FilterConfigError
from filtering import (
    filter_by_activity,
    filter_included_excluded,
    filter_project_infos,
    is_in_interval,
    parse_duration,
)
from models import ZERO_TIME, ProjectInfo, new_provider_option

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _infos(*names: str):
    return [ProjectInfo(original_name=name) for name in names]


def _names(infos):
    return [info.original_name for info in infos]


@pytest.mark.parametrize(
    'text, expected',
    [
        ('-24h', timedelta(hours=-24)),
        ('1h30m', timedelta(hours=1, minutes=30)),
        ('90s', timedelta(seconds=90)),
        ('250ms', timedelta(milliseconds=250)),
        ('1.5h', timedelta(minutes=90)),
        ('+2m', timedelta(minutes=2)),
        ('0', timedelta(0)),
    ],
)
def test_parse_duration(text: str, expected: timedelta) -> None:
    assert parse_duration(text) == expected


@pytest.mark.parametrize('text', ['', '24', '1d', 'h', '-', '1h 30m', 'abc'])
def test_parse_duration_rejects_malformed(text: str) -> None:
    with pytest.raises(FilterConfigError):
        parse_duration(text)


def test_inclusion_takes_precedence_over_exclusion() -> None:
    """With an inclusion list the exclusion list is ignored."""
    infos = _infos('a', 'b', 'c', 'd')

    result = filter_included_excluded(infos, ['c', 'a', 'zz'], ['a', 'b'])

    assert _names(result) == ['a', 'c']


def test_exclusion_is_order_preserving_complement() -> None:
    infos = _infos('d', 'c', 'b', 'a')

    result = filter_included_excluded(infos, [], ['c', 'x'])

    assert _names(result) == ['d', 'b', 'a']


def test_no_lists_keep_everything() -> None:
    infos = _infos('a', 'b')
    assert _names(filter_included_excluded(infos, [], [])) == ['a', 'b']


def test_matching_uses_original_name() -> None:
    """Cleaned names do not affect inclusion matching."""
    info = ProjectInfo(original_name='my.repo').with_clean_name('myrepo')

    assert filter_included_excluded([info], ['my.repo'], []) == [info]
    assert filter_included_excluded([info], ['myrepo'], []) == []


def test_is_in_interval_boundaries() -> None:
    threshold = NOW - timedelta(hours=24)

    assert is_in_interval(threshold, '-24h', NOW) is True
    assert is_in_interval(threshold - timedelta(seconds=1), '-24h', NOW) is False
    assert is_in_interval(ZERO_TIME, '-24h', NOW) is True
    assert is_in_interval(threshold - timedelta(days=30), None, NOW) is True


def test_activity_asymmetry_between_missing_and_zero() -> None:
    """No timestamp is dropped once a window is set; the zero time is kept."""
    missing = ProjectInfo(original_name='missing', last_activity=None)
    zero = ProjectInfo(original_name='zero', last_activity=ZERO_TIME)

    result = filter_by_activity([missing, zero], '-24h', NOW)

    assert _names(result) == ['zero']


def test_activity_without_window_keeps_missing_timestamps() -> None:
    missing = ProjectInfo(original_name='missing')
    assert filter_by_activity([missing], None, NOW) == [missing]


def test_activity_rejects_malformed_window_even_without_input() -> None:
    with pytest.raises(FilterConfigError):
        filter_by_activity([], 'yesterday', NOW)


def test_filter_project_infos_recent_only() -> None:
    """Only the repository active within the last day survives."""
    recent = ProjectInfo(original_name='a', last_activity=NOW)
    stale = ProjectInfo(original_name='b', last_activity=NOW - timedelta(hours=48))
    option = new_provider_option('team', OwnerType.GROUP)

    result = filter_project_infos([recent, stale], option, '-24h', NOW)

    assert result == [recent]


def test_filter_project_infos_names_before_activity() -> None:
    recent = ProjectInfo(original_name='a', last_activity=NOW)
    also_recent = ProjectInfo(original_name='b', last_activity=NOW)
    option = new_provider_option('team', OwnerType.GROUP, excluded=['a'])

    result = filter_project_infos([recent, also_recent], option, '-1h', NOW)

    assert result == [also_recent]


def test_naive_timestamps_are_treated_as_utc() -> None:
    naive = datetime(2024, 6, 1, 11, 0)
    assert is_in_interval(naive, '-2h', NOW) is True
