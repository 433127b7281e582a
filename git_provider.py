#!/usr/bin/env python3
"""Provider-agnostic interface implemented by every hosting backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from filtering import filter_project_infos
from models import CreateProjectOption, ProjectInfo, ProviderOption


class GitProvider(ABC):
    """Discovery, existence, creation, protection and default-branch calls.

    Lookups that may legitimately find nothing (existence, name validity)
    answer with a boolean. Calls that change remote state raise
    ``ProviderError``; whether that ends the run is up to the caller.
    """

    def __init__(self, active_from_limit: Optional[str] = None) -> None:
        self.active_from_limit = active_from_limit

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable provider identifier, e.g. 'github'."""

    @abstractmethod
    def connect(self) -> None:
        """Authenticate; raises AuthenticationError or DiscoveryError."""

    def get_project_infos(
        self, option: ProviderOption, filtering: bool
    ) -> List[ProjectInfo]:
        """Discover repositories of the configured owner.

        Raises DiscoveryError when the owner cannot be resolved.
        """
        project_infos = self._list_project_infos(option)
        if not filtering:
            return project_infos
        return filter_project_infos(project_infos, option, self.active_from_limit)

    @abstractmethod
    def _list_project_infos(self, option: ProviderOption) -> List[ProjectInfo]:
        """Unfiltered discovery, forks already handled."""

    @abstractmethod
    def project_exists(self, owner: str, repo: str) -> Tuple[bool, str]:
        """Return (exists, project_id); a missing project is (False, '')."""

    @abstractmethod
    def create_project(self, option: CreateProjectOption) -> str:
        """Create the repository and return its project id."""

    @abstractmethod
    def is_valid_project_name(self, name: str) -> bool:
        """Pure check against the provider's naming rules."""

    @abstractmethod
    def protect(self, owner: str, default_branch: str, project_id: str) -> None:
        """Protect all branches and tags; already protected is success."""

    @abstractmethod
    def unprotect(self, default_branch: str, project_id: str) -> None:
        """Drop branch and tag protection; nothing to remove is success."""

    @abstractmethod
    def set_default_branch(self, owner: str, name: str, branch: str) -> None:
        """Point the repository's default branch at ``branch``."""

    @abstractmethod
    def git_url(self, owner: str, name: str, ssh: bool = False) -> str:
        """Clone/push URL of ``owner/name`` at this provider."""
