#!/usr/bin/env python3
"""Temporary removal of branch and tag protection around a push."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from git_provider import GitProvider
from logging_utils import Logger


class ProtectionState(Enum):
    PROTECTED = "protected"
    UNPROTECTING = "unprotecting"
    UNPROTECTED = "unprotected"
    PROTECTING = "protecting"


@dataclass
class ProtectionOutcome:
    """Errors raised by the push and by re-protection, if any."""

    push_error: Optional[BaseException] = None
    protect_error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.push_error is None and self.protect_error is None


class ProtectionToggle:
    """Protected -> Unprotecting -> Unprotected -> Protecting -> Protected.

    The toggle only talks to the target provider. Unprotect must finish
    before the push starts; protect runs after the push whatever its result.
    """

    def __init__(
        self,
        provider: GitProvider,
        owner: str,
        default_branch: str,
        project_id: str,
    ) -> None:
        self.provider = provider
        self.owner = owner
        self.default_branch = default_branch
        self.project_id = project_id
        self.state = ProtectionState.PROTECTED

    def unprotect(self) -> None:
        self.state = ProtectionState.UNPROTECTING
        Logger.debug(f"unprotecting {self.project_id}")
        try:
            self.provider.unprotect(self.default_branch, self.project_id)
        except Exception:
            self.state = ProtectionState.PROTECTED
            raise
        self.state = ProtectionState.UNPROTECTED

    def protect(self) -> None:
        self.state = ProtectionState.PROTECTING
        Logger.debug(f"protecting {self.project_id}")
        self.provider.protect(self.owner, self.default_branch, self.project_id)
        self.state = ProtectionState.PROTECTED

    def around(
        self, push: Callable[[], None], was_existing: bool = True
    ) -> ProtectionOutcome:
        """Run ``push`` with protection lifted.

        A failing unprotect is reported as the push error and the push is
        not attempted. Protection is still re-applied in that case.
        """
        outcome = ProtectionOutcome()

        try:
            if was_existing:
                self.unprotect()
            else:
                self.state = ProtectionState.UNPROTECTED
            push()
        except Exception as e:
            outcome.push_error = e

        try:
            self.protect()
        except Exception as e:
            Logger.warn(f"failed to re-protect {self.project_id}: {e}")
            outcome.protect_error = e

        return outcome
