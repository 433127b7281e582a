"""Tests for the GitHub provider backend."""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import github
import pytest

from config import OwnerType, ProviderConfig, ProviderType
from errors import DiscoveryError, ProviderError
from github_provider import GitHubProvider
from models import CreateProjectOption, new_provider_option


def _make_provider(api_url: str = 'https://api.github.com') -> GitHubProvider:
    config = ProviderConfig(
        provider_type=ProviderType.GITHUB,
        url=api_url,
        token='token-value',
        owner='example-org',
        owner_type=OwnerType.GROUP,
    )
    provider = GitHubProvider(config)
    provider.api = MagicMock()
    provider.rate_limiter.wait_if_needed = lambda *_args, **_kwargs: None
    return provider


def _repo(name: str, fork: bool = False, **overrides) -> SimpleNamespace:
    values = dict(
        name=name,
        full_name=f'example-org/{name}',
        clone_url=f'https://github.com/example-org/{name}.git',
        ssh_url=f'git@github.com:example-org/{name}.git',
        default_branch='main',
        description=f'{name} description',
        visibility='public',
        private=False,
        updated_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        fork=fork,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _not_found() -> github.GithubException:
    return github.UnknownObjectException(404, {'message': 'Not Found'}, None)


def _response(status: int, payload=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload if payload is not None else {}
    response.text = ''
    return response


def test_git_url_resolves_enterprise_host() -> None:
    """Enterprise API URLs should map to the git host without /api/v3."""
    provider = _make_provider('https://github.acme.com/api/v3')
    expected = 'https://github.acme.com/example-org/sample.git'
    assert provider.git_url('example-org', 'sample') == expected


def test_git_url_public_host() -> None:
    """Public GitHub API should resolve to github.com for both HTTPS and SSH."""
    provider = _make_provider()
    assert provider.git_url('example-org', 'demo') == 'https://github.com/example-org/demo.git'
    assert (
        provider.git_url('example-org', 'demo', ssh=True)
        == 'git@github.com:example-org/demo.git'
    )


def test_discovery_skips_forks_and_vanished_repositories() -> None:
    """A fork is dropped and a repository answering 404 is skipped."""
    provider = _make_provider()
    listed = [_repo('alpha'), _repo('gone'), _repo('forked', fork=True)]
    provider.api.get_organization.return_value.get_repos.return_value = listed

    def get_repo(full_name: str):
        if full_name == 'example-org/gone':
            raise _not_found()
        return _repo(full_name.split('/')[1])

    provider.api.get_repo.side_effect = get_repo
    option = new_provider_option('example-org', OwnerType.GROUP)

    infos = provider.get_project_infos(option, filtering=False)

    assert [info.original_name for info in infos] == ['alpha']
    assert infos[0].project_id == 'example-org/alpha'
    assert infos[0].last_activity == datetime(2024, 5, 1, tzinfo=timezone.utc)
    provider.api.get_organization.return_value.get_repos.assert_called_once_with(
        type='sources', sort='full_name'
    )


def test_discovery_failure_raises_discovery_error() -> None:
    provider = _make_provider()
    provider.api.get_organization.side_effect = _not_found()
    option = new_provider_option('missing-org', OwnerType.GROUP)

    with pytest.raises(DiscoveryError):
        provider.get_project_infos(option, filtering=True)


def test_project_exists_not_found_is_false() -> None:
    provider = _make_provider()
    provider.api.get_repo.side_effect = _not_found()

    assert provider.project_exists('example-org', 'demo') == (False, '')


def test_project_exists_returns_full_name() -> None:
    provider = _make_provider()
    provider.api.get_repo.return_value = _repo('demo')

    assert provider.project_exists('example-org', 'demo') == (True, 'example-org/demo')


def test_create_project_in_organization_with_disabled_features() -> None:
    provider = _make_provider()
    org = provider.api.get_organization.return_value
    org.create_repo.return_value = _repo('demo')
    option = CreateProjectOption(
        owner='example-org',
        is_group=True,
        repository_name='demo',
        visibility='internal',
        description='desc',
        default_branch='main',
        disabled=True,
    )

    project_id = provider.create_project(option)

    assert project_id == 'example-org/demo'
    kwargs = org.create_repo.call_args.kwargs
    assert kwargs['name'] == 'demo'
    assert kwargs['private'] is True
    assert kwargs['has_issues'] is False
    assert kwargs['has_wiki'] is False


def test_create_project_failure_raises_provider_error() -> None:
    provider = _make_provider()
    provider.api.get_user.return_value.create_repo.side_effect = github.GithubException(
        422, {'message': 'name already exists'}, None
    )
    option = CreateProjectOption('me', False, 'demo', 'private', '', 'main')

    with pytest.raises(ProviderError) as excinfo:
        provider.create_project(option)
    assert excinfo.value.status == 422


@patch('github_provider.requests.request')
def test_unprotect_twice_tolerates_not_found(mock_request: MagicMock) -> None:
    """Unprotecting an unprotected repository is a no-op."""
    provider = _make_provider()
    repo = MagicMock()
    branch = MagicMock()
    branch.name = 'main'
    branch.protected = True
    branch.remove_protection.side_effect = _not_found()
    repo.get_branches.return_value = [branch]
    provider.api.get_repo.return_value = repo
    mock_request.return_value = _response(404)

    provider.unprotect('main', 'example-org/demo')
    provider.unprotect('main', 'example-org/demo')

    assert branch.remove_protection.call_count == 2


@patch('github_provider.requests.request')
def test_unprotect_removes_tag_protection(mock_request: MagicMock) -> None:
    provider = _make_provider()
    repo = MagicMock()
    repo.get_branches.return_value = []
    provider.api.get_repo.return_value = repo
    mock_request.side_effect = [
        _response(200, [{'id': 7, 'pattern': '*'}]),
        _response(204),
    ]

    provider.unprotect('', 'example-org/demo')

    methods = [call.args[0] for call in mock_request.call_args_list]
    urls = [call.args[1] for call in mock_request.call_args_list]
    assert methods == ['GET', 'DELETE']
    assert urls[1].endswith('/repos/example-org/demo/tags/protection/7')


@patch('github_provider.requests.request')
def test_unprotect_missing_default_branch_keeps_protected_branches(
    mock_request: MagicMock,
) -> None:
    """A 404 on the default branch must not drop the branches already found."""
    provider = _make_provider()
    repo = MagicMock()
    develop = MagicMock()
    develop.name = 'develop'
    develop.protected = True
    repo.get_branches.return_value = [develop]
    repo.get_branch.side_effect = _not_found()
    provider.api.get_repo.return_value = repo
    mock_request.return_value = _response(404)

    provider.unprotect('main', 'example-org/demo')

    repo.get_branch.assert_called_once_with('main')
    assert develop.remove_protection.call_count == 1


@patch('github_provider.requests.request')
def test_protect_tolerates_already_protected(mock_request: MagicMock) -> None:
    """409 on branches and 422 on tags count as already protected."""
    provider = _make_provider()
    branch = MagicMock()
    branch.name = 'main'
    branch.edit_protection.side_effect = github.GithubException(409, {}, None)
    provider.api.get_repo.return_value.get_branches.return_value = [branch]
    mock_request.side_effect = [_response(204), _response(422)]

    provider.protect('example-org', 'main', 'example-org/demo')

    branch.edit_protection.assert_called_once()
    assert branch.edit_protection.call_args.kwargs['allow_force_pushes'] is False
    actions_call = mock_request.call_args_list[0]
    assert actions_call.args[0] == 'PUT'
    assert actions_call.kwargs['json'] == {'enabled': False}


@patch('github_provider.requests.request')
def test_protect_surfaces_unexpected_errors(mock_request: MagicMock) -> None:
    provider = _make_provider()
    mock_request.return_value = _response(500)

    with pytest.raises(ProviderError):
        provider.protect('example-org', 'main', 'example-org/demo')


def test_set_default_branch_edits_repository() -> None:
    provider = _make_provider()
    repo = provider.api.get_repo.return_value

    provider.set_default_branch('example-org', 'demo', 'develop')

    provider.api.get_repo.assert_called_with('example-org/demo')
    repo.edit.assert_called_once_with(default_branch='develop')


@patch('github_provider.requests.request')
@patch('github_provider.github.Github')
def test_connect_unknown_org_raises_discovery_error(
    mock_github: MagicMock, mock_request: MagicMock
) -> None:
    provider = _make_provider()
    mock_request.return_value = _response(404)

    with pytest.raises(DiscoveryError):
        provider.connect()


def test_name_validation_uses_github_rules() -> None:
    provider = _make_provider()
    assert provider.is_valid_project_name('a' * 100) is True
    assert provider.is_valid_project_name('a' * 101) is False
    assert provider.is_valid_project_name('repo name') is False
