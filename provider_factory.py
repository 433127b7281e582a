#!/usr/bin/env python3
"""Build the provider backend matching a ProviderConfig."""

from __future__ import annotations

from typing import Optional

from config import ProviderConfig, ProviderType
from git_provider import GitProvider
from gitea_provider import GiteaProvider
from github_provider import GitHubProvider
from gitlab_provider import GitLabProvider


def new_git_provider(
    config: ProviderConfig,
    active_from_limit: Optional[str] = None,
    timeout_s: float = 30.0,
) -> GitProvider:
    if config.provider_type == ProviderType.GITHUB:
        return GitHubProvider(config, active_from_limit, timeout_s)
    if config.provider_type == ProviderType.GITLAB:
        return GitLabProvider(config, active_from_limit, timeout_s)
    if config.provider_type == ProviderType.GITEA:
        return GiteaProvider(config, active_from_limit, timeout_s)
    raise ValueError(f"unsupported provider: {config.provider_type}")
