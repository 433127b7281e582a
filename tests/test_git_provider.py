"""Tests for the provider base class."""

from __future__ import annotations

import pytest

from git_provider import GitProvider


class _WithoutGitUrl(GitProvider):
    name = 'partial'

    def connect(self) -> None:
        pass

    def _list_project_infos(self, option):
        return []

    def project_exists(self, owner, repo):
        return False, ''

    def create_project(self, option):
        return ''

    def is_valid_project_name(self, name):
        return True

    def protect(self, owner, default_branch, project_id):
        pass

    def unprotect(self, default_branch, project_id):
        pass

    def set_default_branch(self, owner, name, branch):
        pass


def test_backend_without_git_url_cannot_be_built() -> None:
    """git_url is part of the contract every backend must fill in."""
    with pytest.raises(TypeError):
        _WithoutGitUrl()


def test_backend_with_git_url_can_be_built() -> None:
    class Complete(_WithoutGitUrl):
        def git_url(self, owner, name, ssh=False):
            return f'https://example.com/{owner}/{name}.git'

    assert Complete().git_url('org', 'demo') == 'https://example.com/org/demo.git'
