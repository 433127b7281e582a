#!/usr/bin/env python3
"""GitLab backend of the provider interface."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import gitlab

from config import ProviderConfig
from errors import AuthenticationError, DiscoveryError, ProviderError
from git_provider import GitProvider
from logging_utils import Logger
from models import CreateProjectOption, ProjectInfo, ProviderOption
from name_validation import is_valid_gitlab_name
from utils import RateLimiter

NO_ACCESS = int(gitlab.const.AccessLevel.NO_ACCESS)
WILDCARD = "*"

# Project settings switched off on mirrors created with disabled features
_DISABLED_FEATURES: Dict[str, Any] = {
    "auto_devops_enabled": False,
    "builds_access_level": "disabled",
    "container_registry_access_level": "disabled",
    "environments_access_level": "disabled",
    "feature_flags_access_level": "disabled",
    "group_runners_enabled": False,
    "infrastructure_access_level": "disabled",
    "issues_access_level": "disabled",
    "lfs_enabled": False,
    "merge_requests_access_level": "disabled",
    "model_experiments_access_level": "disabled",
    "monitor_access_level": "disabled",
    "packages_enabled": False,
    "pages_access_level": "disabled",
    "public_builds": False,
    "releases_access_level": "disabled",
    "request_access_enabled": False,
    "requirements_access_level": "disabled",
    "security_and_compliance_access_level": "disabled",
    "shared_runners_enabled": False,
    "snippets_access_level": "disabled",
    "wiki_access_level": "disabled",
}


def _status(error: Exception) -> Optional[int]:
    return getattr(error, "response_code", None)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class GitLabProvider(GitProvider):
    """python-gitlab wrapper for discovery, creation and protection."""

    def __init__(
        self,
        config: ProviderConfig,
        active_from_limit: Optional[str] = None,
        timeout_s: float = 30.0,
    ) -> None:
        super().__init__(active_from_limit)
        self.config = config
        self.timeout_s = timeout_s
        self.api: Optional[gitlab.Gitlab] = None
        self.rate_limiter = RateLimiter(
            max_requests_per_minute=300
        )  # Conservative GitLab.com authenticated limit

    @property
    def name(self) -> str:
        return "gitlab"

    def connect(self) -> None:
        Logger.info(f"init gitlab API: {self.config.url}")
        try:
            self.api = gitlab.Gitlab(
                url=self.config.url,
                private_token=self.config.token,
                timeout=self.timeout_s,
            )
            self.api.auth()
        except gitlab.exceptions.GitlabAuthenticationError as e:
            raise AuthenticationError(str(e), "gitlab authentication") from e
        except gitlab.exceptions.GitlabError as e:
            raise DiscoveryError(str(e), "gitlab connect") from e

    def _client(self) -> gitlab.Gitlab:
        if self.api is None:
            raise ProviderError("gitlab API not initialized", "gitlab")
        return self.api

    def _list_project_infos(self, option: ProviderOption) -> List[ProjectInfo]:
        api = self._client()
        Logger.info(f"discovering projects under: {option.owner}")
        try:
            self.rate_limiter.wait_if_needed("GitLab API")
            if option.is_group():
                owner = api.groups.get(option.owner)
                projects = owner.projects.list(get_all=True, order_by="name", sort="asc")
            else:
                users = api.users.list(username=option.owner)
                if not users:
                    raise DiscoveryError(
                        f"no user found with name: {option.owner}", "gitlab discovery"
                    )
                projects = users[0].projects.list(
                    get_all=True, owned=True, order_by="name", sort="asc"
                )
        except gitlab.exceptions.GitlabAuthenticationError as e:
            raise AuthenticationError(str(e), "gitlab discovery") from e
        except gitlab.exceptions.GitlabError as e:
            raise DiscoveryError(
                f"failed to list projects under '{option.owner}': {e}",
                "gitlab discovery",
            ) from e

        Logger.debug(f"total fetched projects: {len(projects)}")

        project_infos: List[ProjectInfo] = []
        for project in projects:
            path_ns = getattr(project, "path_with_namespace", "")
            if not option.include_forks and getattr(project, "forked_from_project", None):
                Logger.debug(f"skipping fork: {path_ns}")
                continue

            info = self._new_project_info(path_ns, getattr(project, "path", ""))
            if info is not None:
                project_infos.append(info)
                Logger.debug(f"found: {path_ns}")

        Logger.info(f"found {len(project_infos)} projects under {option.owner}")
        return project_infos

    def _new_project_info(self, path_ns: str, name: str) -> Optional[ProjectInfo]:
        """Fetch full metadata; a project that vanished meanwhile is skipped."""
        api = self._client()
        try:
            self.rate_limiter.wait_if_needed("GitLab API")
            project = api.projects.get(path_ns)
        except gitlab.exceptions.GitlabGetError as e:
            if _status(e) == 404:
                Logger.warn(f"repository not found, ignoring: {path_ns}")
                return None
            raise DiscoveryError(
                f"failed to get project '{path_ns}': {e}", "gitlab discovery"
            ) from e

        return ProjectInfo(
            original_name=name or project.path,
            https_url=project.http_url_to_repo,
            ssh_url=project.ssh_url_to_repo,
            default_branch=getattr(project, "default_branch", None) or "",
            description=getattr(project, "description", None) or "",
            visibility=getattr(project, "visibility", "private"),
            last_activity=_parse_timestamp(getattr(project, "last_activity_at", None)),
            project_id=str(project.id),
        )

    def project_exists(self, owner: str, repo: str) -> Tuple[bool, str]:
        api = self._client()
        try:
            self.rate_limiter.wait_if_needed("GitLab API")
            project = api.projects.get(f"{owner}/{repo}")
        except gitlab.exceptions.GitlabGetError as e:
            if _status(e) == 404:
                return False, ""
            raise ProviderError(str(e), "gitlab project exists", _status(e)) from e
        return True, str(project.id)

    def _namespace_id(self, option: CreateProjectOption) -> Optional[int]:
        if not option.is_group:
            return None
        api = self._client()
        try:
            self.rate_limiter.wait_if_needed("GitLab API")
            groups = api.groups.list(search=option.owner)
        except gitlab.exceptions.GitlabAuthenticationError as e:
            raise ProviderError(
                "authentication failed: please check your token permissions",
                "gitlab namespace",
                _status(e),
            ) from e
        except gitlab.exceptions.GitlabError as e:
            raise ProviderError(str(e), "gitlab namespace", _status(e)) from e

        if not groups:
            raise ProviderError(f"no group found with name: {option.owner}", "gitlab namespace")

        for group in groups:
            if getattr(group, "full_path", "").lower() == option.owner.lower():
                return group.id
        return groups[0].id

    def create_project(self, option: CreateProjectOption) -> str:
        api = self._client()
        data: Dict[str, Any] = {
            "name": option.repository_name,
            "path": option.repository_name,
            "description": option.description,
            "visibility": option.visibility,
        }
        if option.default_branch:
            data["default_branch"] = option.default_branch

        namespace_id = self._namespace_id(option)
        if namespace_id is not None:
            data["namespace_id"] = namespace_id

        if option.disabled:
            data.update(_DISABLED_FEATURES)

        try:
            self.rate_limiter.wait_if_needed("GitLab API")
            project = api.projects.create(data)
        except gitlab.exceptions.GitlabError as e:
            raise ProviderError(
                f"failed to create project '{option.repository_name}': {e}",
                "gitlab create",
                _status(e),
            ) from e

        Logger.info(f"created repo: {option.owner}/{option.repository_name}")
        return str(project.id)

    def is_valid_project_name(self, name: str) -> bool:
        if is_valid_gitlab_name(name):
            return True
        Logger.debug(
            f"invalid GitLab repository name: {name} "
            "(see https://docs.gitlab.com/ee/user/reserved_names.html)"
        )
        return False

    def protect(self, owner: str, default_branch: str, project_id: str) -> None:
        project = self._client().projects.get(project_id, lazy=True)
        rule = {
            "push_access_level": NO_ACCESS,
            "merge_access_level": NO_ACCESS,
            "allow_force_push": False,
            "code_owner_approval_required": True,
        }
        branches = [WILDCARD]
        if default_branch and default_branch != WILDCARD:
            branches.append(default_branch)

        for branch in branches:
            try:
                self.rate_limiter.wait_if_needed("GitLab API")
                project.protectedbranches.create({"name": branch, **rule})
            except gitlab.exceptions.GitlabCreateError as e:
                if _status(e) != 409:
                    raise ProviderError(
                        f"failed to protect branch '{branch}': {e}",
                        "gitlab protect",
                        _status(e),
                    ) from e
                Logger.debug(f"branch '{branch}' already protected ({project_id})")

        try:
            self.rate_limiter.wait_if_needed("GitLab API")
            project.protectedtags.create(
                {"name": WILDCARD, "create_access_level": NO_ACCESS}
            )
        except gitlab.exceptions.GitlabCreateError as e:
            if _status(e) != 409:
                raise ProviderError(
                    f"failed to protect tags: {e}", "gitlab protect", _status(e)
                ) from e
            Logger.debug(f"tags already protected ({project_id})")

    def unprotect(self, default_branch: str, project_id: str) -> None:
        project = self._client().projects.get(project_id, lazy=True)

        for branch in (WILDCARD, default_branch):
            if not branch:
                continue
            self._delete_tolerating_404(
                project.protectedbranches, branch, f"branch '{branch}'"
            )

        try:
            self.rate_limiter.wait_if_needed("GitLab API")
            tags = project.protectedtags.list(get_all=True)
        except gitlab.exceptions.GitlabListError as e:
            if _status(e) == 404:
                return
            raise ProviderError(
                f"failed to list protected tags: {e}", "gitlab unprotect", _status(e)
            ) from e

        for tag in tags:
            self._delete_tolerating_404(project.protectedtags, tag.name, f"tag '{tag.name}'")

    def _delete_tolerating_404(self, manager, identifier: str, what: str) -> None:
        try:
            self.rate_limiter.wait_if_needed("GitLab API")
            manager.delete(identifier)
        except gitlab.exceptions.GitlabDeleteError as e:
            if _status(e) != 404:
                raise ProviderError(
                    f"failed to unprotect {what}: {e}", "gitlab unprotect", _status(e)
                ) from e
            Logger.debug(f"{what} was not protected")

    def set_default_branch(self, owner: str, name: str, branch: str) -> None:
        try:
            self.rate_limiter.wait_if_needed("GitLab API")
            self._client().projects.update(f"{owner}/{name}", {"default_branch": branch})
        except gitlab.exceptions.GitlabError as e:
            raise ProviderError(
                f"failed to set default branch '{branch}' on {owner}/{name}: {e}",
                "gitlab default branch",
                _status(e),
            ) from e

    def git_url(self, owner: str, name: str, ssh: bool = False) -> str:
        parsed = urlsplit(self.config.url)
        if ssh:
            return f"git@{parsed.hostname}:{owner}/{name}.git"
        return f"{self.config.url.rstrip('/')}/{owner}/{name}.git"
