#!/usr/bin/env python3
"""Repository filtering: name inclusion/exclusion, then activity window."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence

from errors import FilterConfigError
from logging_utils import Logger
from models import ProjectInfo, ProviderOption, is_zero_time

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(text: str) -> timedelta:
    """Parse a Go-style duration such as '-24h', '1h30m' or '250ms'."""
    if text is None:
        raise FilterConfigError("duration is missing", "parse duration")

    body = text.strip()
    sign = 1
    if body[:1] in ("-", "+"):
        sign = -1 if body[0] == "-" else 1
        body = body[1:]

    if body == "0":
        return timedelta(0)
    if not body:
        raise FilterConfigError(f"invalid duration {text!r}", "parse duration")

    seconds = 0.0
    pos = 0
    while pos < len(body):
        match = _DURATION_PART.match(body, pos)
        if match is None:
            raise FilterConfigError(f"invalid duration {text!r}", "parse duration")
        seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()

    return timedelta(seconds=sign * seconds)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_in_interval(
    updated_at: datetime, window: Optional[str], now: Optional[datetime] = None
) -> bool:
    """True when ``updated_at`` is at or after ``now + window``.

    The zero timestamp and an unset window always pass.
    """
    if is_zero_time(updated_at):
        return True
    if not window:
        return True

    threshold = _as_utc(now or datetime.now(timezone.utc)) + parse_duration(window)
    return _as_utc(updated_at) >= threshold


def should_include_repo(
    repo_name: str, included: Sequence[str], excluded: Sequence[str]
) -> bool:
    if included:
        return repo_name in included
    if excluded:
        return repo_name not in excluded
    return True


def filter_included_excluded(
    project_infos: Iterable[ProjectInfo],
    included: Sequence[str],
    excluded: Sequence[str],
) -> List[ProjectInfo]:
    """Keep repositories named in ``included``, or not named in ``excluded``.

    A non-empty inclusion list makes the exclusion list irrelevant. Input
    order is preserved.
    """
    kept = []
    for info in project_infos:
        if should_include_repo(info.original_name, included, excluded):
            kept.append(info)
        else:
            Logger.debug(f"filtered out by include/exclude: {info.original_name}")
    return kept


def filter_by_activity(
    project_infos: Iterable[ProjectInfo],
    window: Optional[str],
    now: Optional[datetime] = None,
) -> List[ProjectInfo]:
    """Keep repositories active inside the window.

    Once a window is configured a repository without any activity timestamp
    is dropped, while one carrying the zero timestamp is kept.
    """
    if not window:
        return list(project_infos)

    # Surface a malformed window even when there is nothing to filter
    parse_duration(window)
    now = now or datetime.now(timezone.utc)

    kept = []
    for info in project_infos:
        if info.last_activity is None:
            Logger.debug(f"no activity data, skipping: {info.original_name}")
            continue
        if is_in_interval(info.last_activity, window, now):
            kept.append(info)
        else:
            Logger.debug(f"inactive since {window}, skipping: {info.original_name}")
    return kept


def filter_project_infos(
    project_infos: Iterable[ProjectInfo],
    option: ProviderOption,
    window: Optional[str],
    now: Optional[datetime] = None,
) -> List[ProjectInfo]:
    """Inclusion/exclusion first, then the activity window."""
    named = filter_included_excluded(
        project_infos, option.included_repositories, option.excluded_repositories
    )
    return filter_by_activity(named, window, now)
