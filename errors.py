#!/usr/bin/env python3
"""Exception types and exit codes for provider-sync."""

from __future__ import annotations

from typing import Optional

# Exit codes
EXIT_SUCCESS = 0
EXIT_EXECUTION_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_PARTIAL_FAILURE = 3
EXIT_INVALID_NAME = 4
EXIT_DISCOVERY_ERROR = 30
EXIT_AUTH_ERROR = 40
EXIT_CANCELLED = 130


class SyncError(Exception):
    """Base exception for all provider-sync errors."""

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        self.message = message
        self.operation = operation
        if operation:
            super().__init__(f"{operation}: {message}")
        else:
            super().__init__(message)


class DiscoveryError(SyncError):
    """Raised when the source owner or group cannot be resolved."""


class AuthenticationError(DiscoveryError):
    """Raised when a provider rejects the configured credentials."""


class FilterConfigError(SyncError):
    """Raised when the filter configuration is malformed."""


class InvalidProjectNameError(SyncError):
    """Raised when a repository name is not valid at the target provider."""

    def __init__(self, name: str, provider: str) -> None:
        self.name = name
        self.provider = provider
        super().__init__(f"invalid repository name for {provider}: {name}")


class ProviderError(SyncError):
    """Raised when a provider API call fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        self.status = status
        super().__init__(message, operation)


class GitOperationError(SyncError):
    """Raised when a delegated git command fails or times out."""


class SyncCancelledError(SyncError):
    """Raised when the run has been cancelled."""

    def __init__(self, message: str = "sync run cancelled") -> None:
        super().__init__(message)


def user_friendly_hint(error: BaseException) -> Optional[str]:
    """Return an extra hint for well-known failure messages."""
    message = str(error)
    if "non-fast-forward" in message:
        return (
            "a fast-forward update to the target failed; the target may have "
            "diverged from the source. Consider --force-push or resolve it "
            "manually."
        )
    if "Permission denied (publickey)" in message:
        return "ssh authentication failed; check the ssh key or --*-protocol"
    return None
