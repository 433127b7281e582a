#!/usr/bin/env python3
"""GitHub backend of the provider interface."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import github
import requests

from config import ProviderConfig
from errors import AuthenticationError, DiscoveryError, ProviderError
from git_provider import GitProvider
from logging_utils import Logger
from models import CreateProjectOption, ProjectInfo, ProviderOption
from name_validation import is_valid_github_name
from utils import RateLimiter

PUBLIC_API_URL = "https://api.github.com"

# 404 means nothing to act on; 410 is returned by sunset endpoints
_ABSENT = (404, 410)
_ALREADY_PROTECTED = (409, 422)


class GitHubProvider(GitProvider):
    """PyGithub wrapper for discovery, creation and protection."""

    def __init__(
        self,
        config: ProviderConfig,
        active_from_limit: Optional[str] = None,
        timeout_s: float = 30.0,
    ) -> None:
        super().__init__(active_from_limit)
        self.config = config
        self.timeout_s = timeout_s
        self.api: Optional[github.Github] = None
        self.rate_limiter = RateLimiter(
            max_requests_per_minute=50
        )  # GitHub's secondary rate limit guidance

    @property
    def name(self) -> str:
        return "github"

    def connect(self) -> None:
        Logger.info(f"init github API: {self.config.url}")
        try:
            auth = github.Auth.Token(self.config.token)
            if self.config.url != PUBLIC_API_URL:
                self.api = github.Github(
                    base_url=self.config.url, auth=auth, timeout=int(self.timeout_s)
                )
            else:
                self.api = github.Github(auth=auth, timeout=int(self.timeout_s))
            if self.config.is_group():
                self._preflight_org_access()
            else:
                self.rate_limiter.wait_if_needed("GitHub API")
                Logger.debug(f"github user: {self.api.get_user().login}")
        except github.BadCredentialsException as e:
            raise AuthenticationError("invalid token", "github authentication") from e
        except (github.GithubException, ProviderError) as e:
            raise DiscoveryError(str(e), "github connect") from e

    def _client(self) -> github.Github:
        if self.api is None:
            raise ProviderError("github API not initialized", "github")
        return self.api

    def _get_api_headers(self) -> dict:
        """Get standard API headers for GitHub requests."""
        return {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self.config.token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _request(
        self, method: str, path: str, operation: str, json: Optional[dict] = None
    ) -> requests.Response:
        url = f"{self.config.url.rstrip('/')}{path}"
        try:
            self.rate_limiter.wait_if_needed("GitHub API")
            return requests.request(
                method,
                url,
                headers=self._get_api_headers(),
                json=json,
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise ProviderError(f"failed to contact github api: {e}", operation) from e

    def _check_org_visibility(self) -> None:
        """Check if organization exists and is visible to the token."""
        r_org = self._request("GET", f"/orgs/{self.config.owner}", "github preflight")

        if r_org.status_code == 401:
            raise AuthenticationError(
                "unauthorized (401): token invalid or not authorized for GitHub API",
                "github preflight",
            )
        if r_org.status_code == 403:
            raise AuthenticationError(
                "forbidden (403): token lacks permission to access the organization. "
                "Possible causes: missing read:org scope, "
                "fine-grained token not granted to the org, "
                "or SAML SSO not authorized for this token.",
                "github preflight",
            )
        if r_org.status_code == 404:
            raise DiscoveryError(
                f"not found (404): organization '{self.config.owner}' does not "
                "exist or is not visible to this token (not a member).",
                "github preflight",
            )
        if r_org.status_code != 200:
            Logger.warn(
                f"unexpected response checking org visibility: {r_org.status_code}"
            )

    def _check_org_membership(self) -> None:
        """Report organization membership and role."""
        try:
            r_mem = self._request(
                "GET", f"/user/memberships/orgs/{self.config.owner}", "github preflight"
            )
        except ProviderError:
            Logger.warn("could not check org membership (request error)")
            return

        if r_mem.status_code != 200:
            Logger.warn(
                f"could not read org membership ({r_mem.status_code}); "
                "operations may fail"
            )
            return

        data = r_mem.json()
        state = data.get("state")  # active, pending
        role = data.get("role")  # admin, member
        Logger.info(f"org membership: state={state}, role={role}")
        if state != "active":
            Logger.warn("membership not active for the organization; access may fail")
        elif role != "admin":
            Logger.warn(
                "membership role is not admin; repo creation and branch protection "
                "may be restricted by org settings"
            )

    def _preflight_org_access(self) -> None:
        """Check org exists/visible and report membership and role."""
        self._check_org_visibility()
        self._check_org_membership()

    def _list_repositories(self, option: ProviderOption):
        api = self._client()
        self.rate_limiter.wait_if_needed("GitHub API")
        if option.is_group():
            list_type = "all" if option.include_forks else "sources"
            return api.get_organization(option.owner).get_repos(
                type=list_type, sort="full_name"
            )

        user = api.get_user()
        if user.login.lower() == option.owner.lower():
            return user.get_repos(visibility="all", affiliation="owner", sort="full_name")
        return api.get_user(option.owner).get_repos(type="owner", sort="full_name")

    def _list_project_infos(self, option: ProviderOption) -> List[ProjectInfo]:
        Logger.info(f"discovering repositories under: {option.owner}")
        try:
            repositories = list(self._list_repositories(option))
        except github.BadCredentialsException as e:
            raise AuthenticationError("invalid token", "github discovery") from e
        except github.GithubException as e:
            raise DiscoveryError(
                f"failed to list repositories under '{option.owner}': {e}",
                "github discovery",
            ) from e

        Logger.debug(f"total fetched repositories: {len(repositories)}")

        project_infos: List[ProjectInfo] = []
        for repo in repositories:
            if not option.include_forks and repo.fork:
                Logger.debug(f"skipping fork: {repo.full_name}")
                continue

            info = self._new_project_info(repo.full_name)
            if info is not None:
                project_infos.append(info)
                Logger.debug(f"found: {repo.full_name}")

        Logger.info(f"found {len(project_infos)} repositories under {option.owner}")
        return project_infos

    def _new_project_info(self, full_name: str) -> Optional[ProjectInfo]:
        """Fetch full metadata; a repository that vanished meanwhile is skipped."""
        try:
            self.rate_limiter.wait_if_needed("GitHub API")
            repo = self._client().get_repo(full_name)
        except github.GithubException as e:
            if e.status == 404:
                Logger.warn(f"repository not found, ignoring: {full_name}")
                return None
            raise DiscoveryError(
                f"failed to get repository '{full_name}': {e}", "github discovery"
            ) from e

        visibility = getattr(repo, "visibility", None) or (
            "private" if repo.private else "public"
        )
        return ProjectInfo(
            original_name=repo.name,
            https_url=repo.clone_url or "",
            ssh_url=repo.ssh_url or "",
            default_branch=repo.default_branch or "",
            description=repo.description or "",
            visibility=visibility,
            last_activity=repo.updated_at,
            project_id=repo.full_name,
        )

    def project_exists(self, owner: str, repo: str) -> Tuple[bool, str]:
        try:
            self.rate_limiter.wait_if_needed("GitHub API")
            project = self._client().get_repo(f"{owner}/{repo}")
        except github.GithubException as e:
            if e.status == 404:
                return False, ""
            raise ProviderError(str(e), "github project exists", e.status) from e
        return True, project.full_name

    def create_project(self, option: CreateProjectOption) -> str:
        api = self._client()
        kwargs: Dict[str, Any] = {
            "name": option.repository_name,
            "description": option.description,
            "private": option.visibility != "public",
            "auto_init": False,
        }
        if option.disabled:
            kwargs.update(
                has_issues=False,
                has_wiki=False,
                has_projects=False,
                has_downloads=False,
                delete_branch_on_merge=False,
            )

        try:
            self.rate_limiter.wait_if_needed("GitHub API")
            if option.is_group:
                owner = api.get_organization(option.owner)
            else:
                owner = api.get_user()
            self.rate_limiter.wait_if_needed("GitHub API")
            created = owner.create_repo(**kwargs)
        except github.GithubException as e:
            raise ProviderError(
                f"failed to create repo '{option.repository_name}': {e}",
                "github create",
                e.status,
            ) from e

        Logger.info(f"created repo: {created.full_name}")
        return created.full_name

    def is_valid_project_name(self, name: str) -> bool:
        if is_valid_github_name(name):
            return True
        Logger.debug(f"invalid GitHub repository name: {name}")
        return False

    def protect(self, owner: str, default_branch: str, project_id: str) -> None:
        self._disable_actions(project_id)
        self._enable_branch_protection(project_id)
        self._enable_tag_protection(project_id)

    def _disable_actions(self, project_id: str) -> None:
        response = self._request(
            "PUT",
            f"/repos/{project_id}/actions/permissions",
            "github protect",
            json={"enabled": False},
        )
        if response.status_code in _ABSENT:
            Logger.debug(f"actions permissions unavailable for {project_id}")
        elif response.status_code >= 400:
            raise ProviderError(
                f"failed to disable actions: {response.status_code} {response.text}",
                "github protect",
                response.status_code,
            )

    def _enable_branch_protection(self, project_id: str) -> None:
        try:
            self.rate_limiter.wait_if_needed("GitHub API")
            repo = self._client().get_repo(project_id)
            branches = list(repo.get_branches())
        except github.GithubException as e:
            if e.status in _ABSENT:
                Logger.debug(f"no branches to protect in {project_id}")
                return
            raise ProviderError(
                f"failed to list branches: {e}", "github protect", e.status
            ) from e

        for branch in branches:
            try:
                self.rate_limiter.wait_if_needed("GitHub API")
                branch.edit_protection(
                    strict=True,
                    contexts=[],
                    enforce_admins=True,
                    dismiss_stale_reviews=True,
                    require_code_owner_reviews=True,
                    required_approving_review_count=1,
                    allow_force_pushes=False,
                    allow_deletions=False,
                )
            except github.GithubException as e:
                if e.status in _ABSENT or e.status == 409:
                    Logger.debug(f"branch '{branch.name}' protection skipped ({e.status})")
                    continue
                raise ProviderError(
                    f"failed to protect branch '{branch.name}': {e}",
                    "github protect",
                    e.status,
                ) from e

    def _enable_tag_protection(self, project_id: str) -> None:
        response = self._request(
            "POST",
            f"/repos/{project_id}/tags/protection",
            "github protect",
            json={"pattern": "*"},
        )
        if response.status_code in _ALREADY_PROTECTED:
            Logger.debug(f"tags already protected in {project_id}")
        elif response.status_code in _ABSENT:
            Logger.debug(f"tag protection unavailable for {project_id}")
        elif response.status_code >= 400:
            raise ProviderError(
                f"failed to protect tags: {response.status_code} {response.text}",
                "github protect",
                response.status_code,
            )

    def unprotect(self, default_branch: str, project_id: str) -> None:
        try:
            self.rate_limiter.wait_if_needed("GitHub API")
            repo = self._client().get_repo(project_id)
            branches = [branch for branch in repo.get_branches() if branch.protected]
        except github.GithubException as e:
            if e.status not in _ABSENT:
                raise ProviderError(
                    f"failed to list branches: {e}", "github unprotect", e.status
                ) from e
            Logger.debug(f"nothing to unprotect in {project_id}")
            repo = None
            branches = []

        if repo is not None and default_branch and all(
            b.name != default_branch for b in branches
        ):
            try:
                self.rate_limiter.wait_if_needed("GitHub API")
                branches.append(repo.get_branch(default_branch))
            except github.GithubException as e:
                if e.status not in _ABSENT:
                    raise ProviderError(
                        f"failed to get branch '{default_branch}': {e}",
                        "github unprotect",
                        e.status,
                    ) from e
                Logger.debug(f"default branch '{default_branch}' not found in {project_id}")

        for branch in branches:
            try:
                self.rate_limiter.wait_if_needed("GitHub API")
                branch.remove_protection()
            except github.GithubException as e:
                if e.status not in _ABSENT:
                    raise ProviderError(
                        f"failed to unprotect branch '{branch.name}': {e}",
                        "github unprotect",
                        e.status,
                    ) from e
                Logger.debug(f"branch '{branch.name}' was not protected")

        self._disable_tag_protection(project_id)

    def _disable_tag_protection(self, project_id: str) -> None:
        response = self._request(
            "GET", f"/repos/{project_id}/tags/protection", "github unprotect"
        )
        if response.status_code in _ABSENT:
            return
        if response.status_code >= 400:
            raise ProviderError(
                f"failed to list tag protection: {response.status_code}",
                "github unprotect",
                response.status_code,
            )

        for rule in response.json():
            deleted = self._request(
                "DELETE",
                f"/repos/{project_id}/tags/protection/{rule['id']}",
                "github unprotect",
            )
            if deleted.status_code >= 400 and deleted.status_code not in _ABSENT:
                raise ProviderError(
                    f"failed to remove tag protection {rule.get('pattern')}: "
                    f"{deleted.status_code}",
                    "github unprotect",
                    deleted.status_code,
                )

    def set_default_branch(self, owner: str, name: str, branch: str) -> None:
        try:
            self.rate_limiter.wait_if_needed("GitHub API")
            repo = self._client().get_repo(f"{owner}/{name}")
            self.rate_limiter.wait_if_needed("GitHub API")
            repo.edit(default_branch=branch)
        except github.GithubException as e:
            raise ProviderError(
                f"failed to set default branch '{branch}' on {owner}/{name}: {e}",
                "github default branch",
                e.status,
            ) from e

    def _git_base_url(self) -> str:
        """Return base URL for Git operations derived from API endpoint."""
        parsed = urlparse(self.config.url)
        if parsed.netloc == "api.github.com":
            return "https://github.com"

        base_path = parsed.path.rstrip("/")
        if base_path.endswith("/api/v3"):
            base_path = base_path[: -len("/api/v3")]
        base = f"{parsed.scheme}://{parsed.netloc}"
        if base_path:
            base += base_path
        return base

    def _git_hostname(self) -> str:
        """Return hostname for SSH Git operations."""
        parsed = urlparse(self.config.url)
        if parsed.netloc == "api.github.com":
            return "github.com"
        return parsed.netloc

    def git_url(self, owner: str, name: str, ssh: bool = False) -> str:
        if ssh:
            return f"git@{self._git_hostname()}:{owner}/{name}.git"
        return f"{self._git_base_url().rstrip('/')}/{owner}/{name}.git"
