#!/usr/bin/env python3
"""Provider-neutral value objects and run bookkeeping for provider-sync."""

from __future__ import annotations

import copy
import dataclasses
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from config import GitProtocol, OwnerType
from security import SecurityValidator
from utils import remove_linebreaks

# Zero value for timestamps; distinct from a missing (None) timestamp
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

ORIGIN_REMOTE = "origin"
UPSTREAM_REMOTE = "sync-upstream"
TARGET_REMOTE = "sync-target"

INVALID_NAME_KEY = "invalid"


def is_zero_time(value: Optional[datetime]) -> bool:
    """Return True for the zero timestamp, naive or aware."""
    if value is None:
        return False
    return value.replace(tzinfo=None) == datetime.min


@dataclass(frozen=True)
class ProjectInfo:
    """Repository descriptor shared between source, target and orchestrator."""

    original_name: str
    https_url: str = ""
    ssh_url: str = ""
    default_branch: str = ""
    description: str = ""
    visibility: str = "private"
    last_activity: Optional[datetime] = None
    project_id: str = ""
    clean_name: str = ""

    def __post_init__(self) -> None:
        if not self.original_name and not self.clean_name:
            raise ValueError("ProjectInfo requires a name")

    @property
    def name(self) -> str:
        return self.clean_name or self.original_name

    def with_clean_name(self, clean_name: str) -> "ProjectInfo":
        return dataclasses.replace(self, clean_name=clean_name)

    def time(self) -> datetime:
        """Last activity, or ZERO_TIME when the provider reported none."""
        if self.last_activity is None:
            return ZERO_TIME
        return self.last_activity

    def clone_url(self, protocol: GitProtocol) -> str:
        if protocol == GitProtocol.SSH:
            return self.ssh_url
        return self.https_url

    def describe(self) -> str:
        return (
            f"{self.name} (default branch: {self.default_branch}, "
            f"visibility: {self.visibility}, "
            f"url: {SecurityValidator.mask_url_credentials(self.https_url)}, "
            f"last activity: {self.time().isoformat()})"
        )


@dataclass(frozen=True)
class ProviderOption:
    """Discovery criteria for one provider owner."""

    owner: str
    owner_type: OwnerType = OwnerType.USER
    include_forks: bool = False
    included_repositories: Tuple[str, ...] = ()
    excluded_repositories: Tuple[str, ...] = ()

    def is_group(self) -> bool:
        return self.owner_type == OwnerType.GROUP

    def __str__(self) -> str:
        return (
            f"ProviderOption{{Owner: {self.owner}, Type: {self.owner_type.value}, "
            f"Forks: {self.include_forks}, "
            f"Included: {list(self.included_repositories)}, "
            f"Excluded: {list(self.excluded_repositories)}}}"
        )


def new_provider_option(
    owner: str,
    owner_type: OwnerType,
    include_forks: bool = False,
    included: Iterable[str] = (),
    excluded: Iterable[str] = (),
) -> ProviderOption:
    return ProviderOption(
        owner=owner,
        owner_type=owner_type,
        include_forks=include_forks,
        included_repositories=tuple(included),
        excluded_repositories=tuple(excluded),
    )


@dataclass(frozen=True)
class CreateProjectOption:
    """Desired state of a repository created at the target provider."""

    owner: str
    is_group: bool
    repository_name: str
    visibility: str
    description: str
    default_branch: str
    disabled: bool = False


def build_description(info: ProjectInfo, prefix: Optional[str] = None) -> str:
    """Description for a mirrored repository, always on a single line."""
    if prefix:
        description = prefix
    else:
        source_url = SecurityValidator.mask_url_credentials(info.https_url, strip=True)
        description = f"Mirrored from: {source_url}: "

    if info.description:
        description += info.description

    return remove_linebreaks(description)


def new_create_project_option(
    info: ProjectInfo,
    owner: str,
    is_group: bool,
    visibility: str,
    disabled: bool,
    description_prefix: Optional[str] = None,
) -> CreateProjectOption:
    return CreateProjectOption(
        owner=owner,
        is_group=is_group,
        repository_name=info.name,
        visibility=visibility,
        description=build_description(info, description_prefix),
        default_branch=info.default_branch,
        disabled=disabled,
    )


@dataclass(frozen=True)
class GitAuth:
    """Credentials for git transport."""

    protocol: GitProtocol = GitProtocol.HTTPS
    username: str = ""
    token: str = field(default="", repr=False)
    ssh_command: str = ""

    def __str__(self) -> str:
        token = "***" if self.token else ""
        return (
            f"GitAuth{{Protocol: {self.protocol.value}, User: {self.username}, "
            f"Token: {token}, SSHCommand: {self.ssh_command}}}"
        )


@dataclass(frozen=True)
class HttpClientOption:
    proxy_url: str = ""


@dataclass(frozen=True)
class CloneOption:
    """Parameters for cloning a source repository."""

    url: str
    target_path: str
    mirror: bool = True
    auth: GitAuth = GitAuth()
    http_client: HttpClientOption = HttpClientOption()

    def __str__(self) -> str:
        return (
            f"CloneOption{{URL: {SecurityValidator.mask_url_credentials(self.url)}, "
            f"Mirror: {self.mirror}, TargetPath: {self.target_path}, "
            f"Auth: {self.auth}}}"
        )

    __repr__ = __str__


def new_clone_option(
    info: ProjectInfo,
    mirror: bool,
    target_path: str,
    auth: GitAuth,
    http_client: HttpClientOption = HttpClientOption(),
) -> CloneOption:
    return CloneOption(
        url=info.clone_url(auth.protocol),
        target_path=target_path,
        mirror=mirror,
        auth=auth,
        http_client=http_client,
    )


@dataclass(frozen=True)
class PushOption:
    """Parameters for pushing a local clone to the target provider."""

    target: str
    ref_specs: Tuple[str, ...]
    force: bool = False
    prune: bool = False
    auth: GitAuth = GitAuth()
    http_client: HttpClientOption = HttpClientOption()

    def __str__(self) -> str:
        return (
            f"PushOption{{Target: {SecurityValidator.mask_url_credentials(self.target)}, "
            f"RefSpecs: {list(self.ref_specs)}, Prune: {self.prune}, "
            f"Force: {self.force}, Auth: {self.auth}}}"
        )

    __repr__ = __str__


DEFAULT_REF_SPECS = ("refs/heads/*:refs/heads/*", "refs/tags/*:refs/tags/*")


def new_push_option(
    target: str,
    prune: bool,
    force: bool,
    auth: GitAuth = GitAuth(),
    http_client: HttpClientOption = HttpClientOption(),
) -> PushOption:
    ref_specs = DEFAULT_REF_SPECS
    if force:
        ref_specs = tuple(
            spec if spec.startswith(("^", "+")) else "+" + spec for spec in ref_specs
        )
    return PushOption(
        target=target,
        ref_specs=ref_specs,
        force=force,
        prune=prune,
        auth=auth,
        http_client=http_client,
    )


@dataclass(frozen=True)
class Remote:
    name: str
    url: str


class SyncRunMetainfo:
    """Totals and failures of one sync run.

    ``total`` is fixed at construction. ``fail`` maps a key (normally the
    repository name, or ``"invalid"`` for skipped names) to the ordered list
    of failure details recorded for it. ``add_failure`` may be called from
    worker threads.
    """

    def __init__(self, ctx_id: int, source: str, target: str, total: int) -> None:
        self._ctx_id = ctx_id
        self._source = source
        self._target = target
        self._total = total
        self._fail: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    @property
    def ctx_id(self) -> int:
        return self._ctx_id

    @property
    def source(self) -> str:
        return self._source

    @property
    def target(self) -> str:
        return self._target

    @property
    def total(self) -> int:
        return self._total

    @property
    def fail(self) -> Dict[str, List[str]]:
        return self.failures()

    def add_failure(self, key: str, value: str) -> None:
        with self._lock:
            self._fail.setdefault(key, []).append(value)

    def failures(self) -> Dict[str, List[str]]:
        with self._lock:
            return copy.deepcopy(self._fail)

    def failure_count(self) -> int:
        with self._lock:
            return sum(len(values) for values in self._fail.values())

    @property
    def succeeded(self) -> bool:
        with self._lock:
            return not self._fail

    def __str__(self) -> str:
        failures = self.failures()
        if failures:
            rendered = "; ".join(
                f"{key}: {', '.join(values)}" for key, values in failures.items()
            )
            fail_info = f"Failures: {{{rendered}}}"
        else:
            fail_info = "No failures"
        return (
            f"SyncRunMetainfo{{CtxID: {self.ctx_id}, Source: {self.source}, "
            f"Target: {self.target}, Total: {self.total}, {fail_info}}}"
        )
