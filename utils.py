#!/usr/bin/env python3
"""Utility functions for provider-sync."""

import re
import threading
import time
from typing import Dict, List

from logging_utils import Logger


class RateLimiter:
    """Rate limiter to respect provider API limits."""

    def __init__(self, max_requests_per_minute: int = 60):
        self.max_requests = max_requests_per_minute
        self.requests: List[float] = []
        self.lock = threading.Lock()

    def wait_if_needed(self, operation_type: str = "API") -> None:
        """Wait if necessary to respect rate limits."""
        current_time = time.time()

        with self.lock:
            self._clean_old_requests(current_time)
            if len(self.requests) >= self.max_requests:
                wait_time = 60 - (current_time - self.requests[0])
                if wait_time > 0:
                    Logger.debug(
                        f"rate limit reached for {operation_type}, "
                        f"waiting {wait_time:.2f}s"
                    )
                    time.sleep(wait_time)
                    current_time = time.time()
                    self._clean_old_requests(current_time)
            self.requests.append(current_time)

    def _clean_old_requests(self, current_time: float) -> None:
        """Remove requests older than 1 minute."""
        cutoff_time = current_time - 60
        self.requests = [
            req_time for req_time in self.requests if req_time > cutoff_time
        ]


_LINEBREAKS = re.compile("\r\n|[\r\n\v\f\u0085\u2028\u2029]")


def remove_linebreaks(text: str) -> str:
    """Replace every kind of line break with a single space."""
    return _LINEBREAKS.sub(" ", text or "")


def remove_non_alphanumeric(name: str) -> str:
    """Reduce a repository name to ASCII letters, digits and single hyphens.

    Example: 'my_repo.name--x' -> 'myreponame-x'
    """
    result = re.sub(r"[^A-Za-z0-9-]", "", name)
    result = re.sub(r"-{2,}", "-", result)
    return result.strip("-")


# source provider -> target provider -> source visibility -> target visibility
_VISIBILITY_MAPPINGS: Dict[str, Dict[str, Dict[str, str]]] = {
    "gitlab": {
        "github": {"public": "public", "internal": "private", "private": "private"},
        "gitea": {"public": "public", "internal": "private", "private": "private"},
    },
    "github": {
        "gitlab": {"public": "public", "private": "private", "internal": "internal"},
        "gitea": {"public": "public", "private": "private", "internal": "private"},
    },
    "gitea": {
        "github": {"public": "public", "private": "private", "limited": "private"},
        "gitlab": {"public": "public", "private": "private", "limited": "private"},
    },
}


def map_visibility(from_provider: str, to_provider: str, visibility: str) -> str:
    """Translate a visibility value between providers."""
    from_provider = from_provider.lower()
    to_provider = to_provider.lower()
    visibility = visibility.lower()

    if from_provider == to_provider:
        return visibility

    targets = _VISIBILITY_MAPPINGS.get(from_provider)
    if targets is None:
        raise ValueError(f"invalid source provider: {from_provider}")

    mapping = targets.get(to_provider)
    if mapping is None:
        raise ValueError(f"invalid target provider: {to_provider}")

    if visibility not in mapping:
        raise ValueError(f"invalid visibility for {from_provider}: {visibility}")

    return mapping[visibility]
