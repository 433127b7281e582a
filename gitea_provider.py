#!/usr/bin/env python3
"""Gitea backend of the provider interface, on the Gitea REST API v1."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, urlsplit

import requests

from config import ProviderConfig
from errors import AuthenticationError, DiscoveryError, ProviderError
from git_provider import GitProvider
from logging_utils import Logger
from models import CreateProjectOption, ProjectInfo, ProviderOption
from name_validation import is_valid_gitea_name
from utils import RateLimiter

API_PATH = "/api/v1"
PAGE_SIZE = 50
WILDCARD = "*"

_ABSENT = (404, 410)
_ALREADY_PROTECTED = (409, 422)

# Repository units switched off on mirrors created with disabled features
_DISABLED_FEATURES: Dict[str, Any] = {
    "has_issues": False,
    "has_wiki": False,
    "has_projects": False,
    "has_pull_requests": False,
    "has_releases": False,
    "has_actions": False,
}


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class GiteaProvider(GitProvider):
    """requests-based client for Gitea discovery, creation and protection."""

    def __init__(
        self,
        config: ProviderConfig,
        active_from_limit: Optional[str] = None,
        timeout_s: float = 30.0,
    ) -> None:
        super().__init__(active_from_limit)
        self.config = config
        self.timeout_s = timeout_s
        self.rate_limiter = RateLimiter(max_requests_per_minute=120)

    @property
    def name(self) -> str:
        return "gitea"

    def _api_url(self) -> str:
        base = self.config.url.rstrip("/")
        if base.endswith(API_PATH):
            return base
        return base + API_PATH

    def _get_api_headers(self) -> dict:
        """Get standard API headers for Gitea requests."""
        return {
            "Accept": "application/json",
            "Authorization": f"token {self.config.token}",
        }

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> requests.Response:
        try:
            self.rate_limiter.wait_if_needed("Gitea API")
            return requests.request(
                method,
                f"{self._api_url()}{path}",
                headers=self._get_api_headers(),
                json=json,
                params=params,
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise ProviderError(f"failed to contact gitea api: {e}", operation) from e

    def _raise_for_status(
        self, response: requests.Response, message: str, operation: str
    ) -> None:
        if response.status_code >= 400:
            raise ProviderError(
                f"{message}: {response.status_code} {response.text}",
                operation,
                response.status_code,
            )

    def connect(self) -> None:
        Logger.info(f"init gitea API: {self._api_url()}")
        try:
            response = self._request("GET", "/user", "gitea connect")
        except ProviderError as e:
            raise DiscoveryError(str(e), "gitea connect") from e
        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"token rejected ({response.status_code})", "gitea authentication"
            )
        if response.status_code != 200:
            raise DiscoveryError(
                f"unexpected response: {response.status_code}", "gitea connect"
            )
        Logger.debug(f"gitea user: {response.json().get('login', '')}")

        if self.config.is_group():
            org = self._request("GET", f"/orgs/{self.config.owner}", "gitea connect")
            if org.status_code == 404:
                raise DiscoveryError(
                    f"organization '{self.config.owner}' does not exist or is "
                    "not visible to this token",
                    "gitea connect",
                )

    def _paginate(self, path: str, operation: str) -> List[dict]:
        items: List[dict] = []
        page = 1
        while True:
            response = self._request(
                "GET", path, operation, params={"page": page, "limit": PAGE_SIZE}
            )
            if response.status_code in (401, 403):
                raise AuthenticationError(
                    f"token rejected ({response.status_code})", operation
                )
            if response.status_code >= 400:
                raise DiscoveryError(
                    f"failed to list {path}: {response.status_code}", operation
                )
            batch = response.json()
            items.extend(batch)
            if len(batch) < PAGE_SIZE:
                return items
            page += 1

    def _list_project_infos(self, option: ProviderOption) -> List[ProjectInfo]:
        Logger.info(f"discovering repositories under: {option.owner}")
        if option.is_group():
            path = f"/orgs/{option.owner}/repos"
        else:
            path = f"/users/{option.owner}/repos"
        try:
            repositories = self._paginate(path, "gitea discovery")
        except ProviderError as e:
            raise DiscoveryError(str(e), "gitea discovery") from e

        Logger.debug(f"total fetched repositories: {len(repositories)}")

        project_infos: List[ProjectInfo] = []
        for repo in repositories:
            full_name = repo.get("full_name", "")
            if not option.include_forks and repo.get("fork"):
                Logger.debug(f"skipping fork: {full_name}")
                continue

            info = self._new_project_info(full_name)
            if info is not None:
                project_infos.append(info)
                Logger.debug(f"found: {full_name}")

        Logger.info(f"found {len(project_infos)} repositories under {option.owner}")
        return project_infos

    def _new_project_info(self, full_name: str) -> Optional[ProjectInfo]:
        """Fetch full metadata; a repository that vanished meanwhile is skipped."""
        response = self._request("GET", f"/repos/{full_name}", "gitea discovery")
        if response.status_code == 404:
            Logger.warn(f"repository not found, ignoring: {full_name}")
            return None
        if response.status_code >= 400:
            raise DiscoveryError(
                f"failed to get repository '{full_name}': {response.status_code}",
                "gitea discovery",
            )

        repo = response.json()
        if repo.get("private"):
            visibility = "private"
        else:
            owner = repo.get("owner") or {}
            visibility = owner.get("visibility") or "public"
        return ProjectInfo(
            original_name=repo["name"],
            https_url=repo.get("clone_url") or "",
            ssh_url=repo.get("ssh_url") or "",
            default_branch=repo.get("default_branch") or "",
            description=repo.get("description") or "",
            visibility=visibility,
            last_activity=_parse_timestamp(repo.get("updated_at")),
            project_id=repo.get("full_name") or full_name,
        )

    def project_exists(self, owner: str, repo: str) -> Tuple[bool, str]:
        response = self._request("GET", f"/repos/{owner}/{repo}", "gitea project exists")
        if response.status_code == 404:
            return False, ""
        self._raise_for_status(response, "failed to look up repository", "gitea project exists")
        return True, response.json().get("full_name", f"{owner}/{repo}")

    def create_project(self, option: CreateProjectOption) -> str:
        data: Dict[str, Any] = {
            "name": option.repository_name,
            "description": option.description,
            "private": option.visibility != "public",
            "auto_init": False,
        }
        if option.default_branch:
            data["default_branch"] = option.default_branch

        if option.is_group:
            path = f"/orgs/{option.owner}/repos"
        else:
            path = "/user/repos"
        response = self._request("POST", path, "gitea create", json=data)
        self._raise_for_status(
            response,
            f"failed to create repo '{option.repository_name}'",
            "gitea create",
        )
        full_name = response.json().get(
            "full_name", f"{option.owner}/{option.repository_name}"
        )

        if option.disabled:
            edited = self._request(
                "PATCH", f"/repos/{full_name}", "gitea create", json=_DISABLED_FEATURES
            )
            self._raise_for_status(
                edited, f"failed to disable features on {full_name}", "gitea create"
            )

        Logger.info(f"created repo: {full_name}")
        return full_name

    def is_valid_project_name(self, name: str) -> bool:
        if is_valid_gitea_name(name):
            return True
        Logger.debug(f"invalid Gitea repository name: {name}")
        return False

    def protect(self, owner: str, default_branch: str, project_id: str) -> None:
        rule = {
            "enable_push": False,
            "enable_merge_whitelist": True,
            "merge_whitelist_usernames": [],
            "block_on_rejected_reviews": True,
            "dismiss_stale_approvals": True,
            "required_approvals": 1,
        }
        branches = [WILDCARD]
        if default_branch and default_branch != WILDCARD:
            branches.append(default_branch)

        for branch in branches:
            response = self._request(
                "POST",
                f"/repos/{project_id}/branch_protections",
                "gitea protect",
                json={"rule_name": branch, **rule},
            )
            if response.status_code in _ALREADY_PROTECTED:
                Logger.debug(f"branch '{branch}' already protected ({project_id})")
                continue
            self._raise_for_status(
                response, f"failed to protect branch '{branch}'", "gitea protect"
            )

        response = self._request(
            "POST",
            f"/repos/{project_id}/tag_protections",
            "gitea protect",
            json={"name_pattern": WILDCARD},
        )
        if response.status_code in _ALREADY_PROTECTED:
            Logger.debug(f"tags already protected ({project_id})")
        elif response.status_code in _ABSENT:
            Logger.debug(f"tag protection unavailable for {project_id}")
        else:
            self._raise_for_status(response, "failed to protect tags", "gitea protect")

    def unprotect(self, default_branch: str, project_id: str) -> None:
        rules = self._list_rules(f"/repos/{project_id}/branch_protections")
        for rule in rules:
            name = rule.get("rule_name") or rule.get("branch_name", "")
            self._delete_tolerating_absent(
                f"/repos/{project_id}/branch_protections/{quote(name, safe='')}",
                f"branch '{name}'",
            )

        tags = self._list_rules(f"/repos/{project_id}/tag_protections")
        for tag in tags:
            self._delete_tolerating_absent(
                f"/repos/{project_id}/tag_protections/{tag['id']}",
                f"tag '{tag.get('name_pattern')}'",
            )

    def _list_rules(self, path: str) -> List[dict]:
        response = self._request("GET", path, "gitea unprotect")
        if response.status_code in _ABSENT:
            Logger.debug(f"nothing to unprotect at {path}")
            return []
        self._raise_for_status(response, "failed to list protection rules", "gitea unprotect")
        return response.json() or []

    def _delete_tolerating_absent(self, path: str, what: str) -> None:
        response = self._request("DELETE", path, "gitea unprotect")
        if response.status_code in _ABSENT:
            Logger.debug(f"{what} was not protected")
            return
        self._raise_for_status(response, f"failed to unprotect {what}", "gitea unprotect")

    def set_default_branch(self, owner: str, name: str, branch: str) -> None:
        response = self._request(
            "PATCH",
            f"/repos/{owner}/{name}",
            "gitea default branch",
            json={"default_branch": branch},
        )
        self._raise_for_status(
            response,
            f"failed to set default branch '{branch}' on {owner}/{name}",
            "gitea default branch",
        )

    def _git_base_url(self) -> str:
        """Web root of the instance, the API suffix removed."""
        base = self.config.url.rstrip("/")
        if base.endswith(API_PATH):
            base = base[: -len(API_PATH)]
        return base

    def git_url(self, owner: str, name: str, ssh: bool = False) -> str:
        if ssh:
            return f"git@{urlsplit(self.config.url).hostname}:{owner}/{name}.git"
        return f"{self._git_base_url()}/{owner}/{name}.git"
