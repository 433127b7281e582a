#!/usr/bin/env python3
"""Configuration dataclasses for provider-sync."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class GitProtocol(Enum):
    """Transport used for git clone/push."""
    HTTPS = "https"
    SSH = "ssh"


class Visibility(Enum):
    """Enumeration for repository visibility levels."""
    PRIVATE = "private"
    PUBLIC = "public"
    INTERNAL = "internal"


class OwnerType(Enum):
    USER = "user"
    GROUP = "group"


class ProviderType(Enum):
    GITHUB = "github"
    GITLAB = "gitlab"
    GITEA = "gitea"


DEFAULT_API_URLS = {
    ProviderType.GITHUB: "https://api.github.com",
    ProviderType.GITLAB: "https://gitlab.com",
    ProviderType.GITEA: "https://gitea.com",
}


@dataclass
class ProviderConfig:
    """Connection and ownership settings for one side of the sync."""
    provider_type: ProviderType
    url: str
    token: str = field(repr=False)
    owner: str
    owner_type: OwnerType = OwnerType.USER
    username: str = ""
    protocol: GitProtocol = GitProtocol.HTTPS
    ssh_command: str = ""

    def is_group(self) -> bool:
        return self.owner_type == OwnerType.GROUP

    def describe(self) -> str:
        return f"{self.provider_type.value}:{self.owner}"


@dataclass
class RepositoryFilterConfig:
    """Which source repositories take part in the run."""
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    include_forks: bool = False
    active_from_limit: Optional[str] = None


@dataclass
class MirrorSettings:
    """How repositories are written at the target."""
    force_push: bool = False
    disabled_features: bool = False
    protect: bool = False
    ignore_invalid_name: bool = False
    ascii_name: bool = False
    description_prefix: Optional[str] = None
    visibility: Optional[Visibility] = None


@dataclass
class GitOperationConfig:
    """Git operation configuration."""
    clone_temp_dir: str
    git_timeout_s: float = 600.0
    api_timeout_s: float = 30.0
    proxy_url: str = ""


@dataclass
class RunConfig:
    dry_run: bool = False
    workers: int = 1
    quiet: bool = False
    verbose: bool = False


@dataclass
class Config:
    """Main configuration for a provider-to-provider sync."""
    source: ProviderConfig
    target: ProviderConfig
    filters: RepositoryFilterConfig
    mirror: MirrorSettings
    git: GitOperationConfig
    run: RunConfig = field(default_factory=RunConfig)
