#!/usr/bin/env python3
"""Main orchestrator for synchronizing repositories between two providers."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional

from config import Config, GitProtocol, ProviderConfig, ProviderType
from errors import (
    EXIT_AUTH_ERROR,
    EXIT_CANCELLED,
    EXIT_CONFIG_ERROR,
    EXIT_DISCOVERY_ERROR,
    EXIT_EXECUTION_ERROR,
    EXIT_INVALID_NAME,
    EXIT_PARTIAL_FAILURE,
    EXIT_SUCCESS,
    AuthenticationError,
    DiscoveryError,
    FilterConfigError,
    InvalidProjectNameError,
    SyncCancelledError,
    user_friendly_hint,
)
from filtering import parse_duration
from git_operations import (
    GitBinarySourceReader,
    GitBinaryWriter,
    GitBranchManager,
    GitExecutor,
    cleanup_temp_dir,
    create_secure_temp_dir,
    set_upstream_remote_from_origin,
)
from git_provider import GitProvider
from logging_utils import Logger
from models import (
    INVALID_NAME_KEY,
    TARGET_REMOTE,
    GitAuth,
    HttpClientOption,
    ProjectInfo,
    SyncRunMetainfo,
    new_clone_option,
    new_create_project_option,
    new_provider_option,
    new_push_option,
)
from protection import ProtectionOutcome, ProtectionToggle
from provider_factory import new_git_provider
from security import SecurityValidator
from utils import map_visibility, remove_non_alphanumeric

# Username presented to the askpass helper when none is configured
_DEFAULT_GIT_USERNAMES = {
    ProviderType.GITHUB: "x-access-token",
    ProviderType.GITLAB: "oauth2",
    ProviderType.GITEA: "oauth2",
}


def git_auth_for(provider: ProviderConfig) -> GitAuth:
    return GitAuth(
        protocol=provider.protocol,
        username=provider.username or _DEFAULT_GIT_USERNAMES[provider.provider_type],
        token=provider.token,
        ssh_command=provider.ssh_command,
    )


class SyncOrchestrator:
    def __init__(
        self,
        cfg: Config,
        source: Optional[GitProvider] = None,
        target: Optional[GitProvider] = None,
        reader=None,
        branch_manager=None,
        writer=None,
    ) -> None:
        self.cfg = cfg
        self.cancel_event = threading.Event()
        self.source = source or new_git_provider(
            cfg.source, cfg.filters.active_from_limit, cfg.git.api_timeout_s
        )
        self.target = target or new_git_provider(
            cfg.target, timeout_s=cfg.git.api_timeout_s
        )

        self.source_auth = git_auth_for(cfg.source)
        self.target_auth = git_auth_for(cfg.target)
        self.http_client = HttpClientOption(proxy_url=cfg.git.proxy_url)

        executor = GitExecutor(cfg.git.git_timeout_s, self.cancel_event)
        self.reader = reader or GitBinarySourceReader(executor)
        self.branch_manager = branch_manager or GitBranchManager(
            executor, self.source_auth, self.http_client
        )
        self.writer = writer or GitBinaryWriter(executor)
        self.metainfo: Optional[SyncRunMetainfo] = None

    def cancel(self) -> None:
        """Abort in-flight work; safe to call from any thread."""
        if not self.cancel_event.is_set():
            Logger.warn("cancelling sync run")
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def run(self) -> int:
        try:
            return self._run()
        except KeyboardInterrupt:
            self.cancel()
            self._report()
            return EXIT_CANCELLED
        except SyncCancelledError:
            self._report()
            return EXIT_CANCELLED
        except AuthenticationError as e:
            Logger.error(f"authentication failed: {e}")
            return EXIT_AUTH_ERROR
        except DiscoveryError as e:
            Logger.error(f"discovery failed: {e}")
            return EXIT_DISCOVERY_ERROR
        except InvalidProjectNameError as e:
            Logger.error(f"{e}; use --ignore-invalid-name to skip them")
            self._report()
            return EXIT_INVALID_NAME
        except FilterConfigError as e:
            Logger.error(f"invalid filter configuration: {e}")
            return EXIT_CONFIG_ERROR
        except Exception as e:
            Logger.error(f"unexpected error: {e}")
            return EXIT_EXECUTION_ERROR

    def _run(self) -> int:
        self.source.connect()
        self.target.connect()

        if self.cfg.filters.active_from_limit:
            parse_duration(self.cfg.filters.active_from_limit)

        projects = self._discover()

        if self.cfg.run.dry_run:
            self._log_plan(projects)
            Logger.info("dry-run completed")
            return EXIT_SUCCESS

        self.metainfo = SyncRunMetainfo(
            ctx_id=int(time.time()),
            source=self.cfg.source.describe(),
            target=self.cfg.target.describe(),
            total=len(projects),
        )

        projects = self._drop_name_collisions(projects)
        valid = self._validate_names(projects)
        if len(valid) != len(projects) and not self.cfg.mirror.ignore_invalid_name:
            invalid = [info.name for info in projects if info not in valid]
            raise InvalidProjectNameError(", ".join(invalid), self.target.name)

        self._sync_all(valid)
        self._report()

        if self.cancelled:
            return EXIT_CANCELLED
        if self.metainfo.succeeded:
            Logger.info("mission accomplished")
            return EXIT_SUCCESS
        return EXIT_PARTIAL_FAILURE

    def _discover(self) -> List[ProjectInfo]:
        option = new_provider_option(
            owner=self.cfg.source.owner,
            owner_type=self.cfg.source.owner_type,
            include_forks=self.cfg.filters.include_forks,
            included=self.cfg.filters.include,
            excluded=self.cfg.filters.exclude,
        )
        Logger.debug(f"discovery: {option}")
        projects = self.source.get_project_infos(option, filtering=True)

        if self.cfg.mirror.ascii_name:
            projects = [
                info.with_clean_name(remove_non_alphanumeric(info.original_name))
                for info in projects
            ]

        Logger.info(f"{len(projects)} repositories to sync")
        return projects

    def _log_plan(self, projects: List[ProjectInfo]) -> None:
        total = len(projects)
        for idx, info in enumerate(projects, start=1):
            Logger.info(
                f"[{idx}/{total}] would sync: {self.cfg.source.owner}/"
                f"{info.original_name} -> {self.cfg.target.owner}/{info.name}"
            )
            Logger.debug(info.describe())

    def _drop_name_collisions(self, projects: List[ProjectInfo]) -> List[ProjectInfo]:
        """Keep the first repository per target name; later ones are failures."""
        seen: Dict[str, ProjectInfo] = {}
        unique = []
        for info in projects:
            first = seen.get(info.name)
            if first is None:
                seen[info.name] = info
                unique.append(info)
                continue
            Logger.warn(
                f"{info.original_name} maps to {info.name}, already used by "
                f"{first.original_name}; skipping"
            )
            self.metainfo.add_failure(
                info.name, f"name collision with {first.original_name}"
            )
        return unique

    def _validate_names(self, projects: List[ProjectInfo]) -> List[ProjectInfo]:
        valid = []
        for info in projects:
            if self.target.is_valid_project_name(info.name):
                valid.append(info)
            else:
                Logger.warn(str(InvalidProjectNameError(info.name, self.target.name)))
                self.metainfo.add_failure(INVALID_NAME_KEY, info.name)
        return valid

    def _sync_all(self, projects: List[ProjectInfo]) -> None:
        total = len(projects)
        workers = max(1, self.cfg.run.workers)
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sync")
        futures: Dict[Future, ProjectInfo] = {}
        try:
            for idx, info in enumerate(projects, start=1):
                future = pool.submit(self._sync_project_safely, info, idx, total)
                futures[future] = info
            for future in as_completed(futures):
                future.result()
        except KeyboardInterrupt:
            self.cancel()
            for future in futures:
                future.cancel()
            raise
        finally:
            pool.shutdown(wait=True)

    def _sync_project_safely(self, info: ProjectInfo, idx: int, total: int) -> None:
        """Sync one repository; failures go to the run bookkeeping."""
        if self.cancelled:
            return
        try:
            self._sync_project(info, idx, total)
        except SyncCancelledError:
            Logger.warn(f"sync cancelled: {info.name}")
        except Exception as e:
            detail = SecurityValidator.sanitize_for_logging(str(e))
            Logger.error(f"sync failed for {info.name}: {detail}")
            hint = user_friendly_hint(e)
            if hint:
                Logger.warn(hint)
            self.metainfo.add_failure(info.name, detail)

    def _target_visibility(self, info: ProjectInfo) -> str:
        if self.cfg.mirror.visibility is not None:
            return self.cfg.mirror.visibility.value
        return map_visibility(
            self.cfg.source.provider_type.value,
            self.cfg.target.provider_type.value,
            info.visibility,
        )

    def _sync_project(self, info: ProjectInfo, idx: int, total: int) -> None:
        owner = self.cfg.target.owner
        name = info.name
        Logger.info(
            f"[{idx}/{total}] sync: {self.cfg.source.owner}/{info.original_name} "
            f"-> {owner}/{name}"
        )

        exists, project_id = self.target.project_exists(owner, name)
        force = self.cfg.mirror.force_push
        if not exists:
            option = new_create_project_option(
                info,
                owner,
                self.cfg.target.is_group(),
                self._target_visibility(info),
                self.cfg.mirror.disabled_features,
                self.cfg.mirror.description_prefix,
            )
            project_id = self.target.create_project(option)
            # Nothing to diverge from in a fresh repository
            force = True

        clone_dir: Optional[str] = None
        try:
            clone_dir = create_secure_temp_dir(name, self.cfg.git.clone_temp_dir)
            repository = self.reader.clone(
                new_clone_option(
                    info, True, clone_dir, self.source_auth, self.http_client
                )
            )
            self.branch_manager.fetch(clone_dir)
            self.branch_manager.create_tracking_branches(clone_dir)
            set_upstream_remote_from_origin(repository)

            target_url = self.target.git_url(
                owner, name, ssh=self.cfg.target.protocol == GitProtocol.SSH
            )
            repository.delete_remote(TARGET_REMOTE)
            repository.create_remote(TARGET_REMOTE, target_url, mirror=False)
            push_option = new_push_option(
                TARGET_REMOTE,
                prune=force,
                force=force,
                auth=self.target_auth,
                http_client=self.http_client,
            )

            def push() -> None:
                self.writer.push(repository, push_option)

            if self.cfg.mirror.protect:
                toggle = ProtectionToggle(
                    self.target, owner, info.default_branch, project_id
                )
                outcome = toggle.around(push, was_existing=exists)
                if not outcome.ok:
                    self._record_protection_outcome(name, outcome)
            else:
                push()

            if info.default_branch:
                self.target.set_default_branch(owner, name, info.default_branch)

            Logger.info(f"synced: {owner}/{name}")
        finally:
            cleanup_temp_dir(clone_dir, name)

    def _record_protection_outcome(self, name: str, outcome: ProtectionOutcome) -> None:
        if outcome.protect_error is not None:
            self.metainfo.add_failure(
                name,
                "protect: "
                + SecurityValidator.sanitize_for_logging(str(outcome.protect_error)),
            )
        if outcome.push_error is not None:
            raise outcome.push_error

    def _report(self) -> None:
        """Log totals and every recorded failure."""
        if self.metainfo is None:
            return
        metainfo = self.metainfo
        failures = metainfo.failures()

        Logger.info(f"Total: {metainfo.total}")
        invalid = failures.pop(INVALID_NAME_KEY, [])
        if invalid:
            Logger.warn(f"Invalid names ({len(invalid)}): {', '.join(invalid)}")

        if failures:
            errors = metainfo.failure_count() - len(invalid)
            Logger.error(f"Failed: {len(failures)} ({errors} errors)")
            for repo_name, details in failures.items():
                for detail in details:
                    Logger.error(f"  {repo_name}: {detail}")
        elif not invalid:
            Logger.info("No failures")
        Logger.debug(str(metainfo))
