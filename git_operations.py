#!/usr/bin/env python3
"""Git transport delegated to the git binary: clone, fetch, remotes and push."""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from config import GitProtocol
from errors import GitOperationError, SyncCancelledError
from logging_utils import Logger
from models import (
    ORIGIN_REMOTE,
    UPSTREAM_REMOTE,
    CloneOption,
    GitAuth,
    HttpClientOption,
    PushOption,
    Remote,
)
from security import SecurityValidator

_PROXY_VARIABLES = ("HTTPS_PROXY", "HTTP_PROXY", "https_proxy", "http_proxy")


def _create_askpass_script(username: str, password: str) -> str:
    """Create a temporary askpass script for secure credential injection."""
    fd, path = tempfile.mkstemp(prefix="sync_askpass_", text=True)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as script:
            script.write("#!/bin/sh\n")
            script.write('case "$1" in\n')
            script.write(f"  *Username*) echo '{username}' ;;\n")
            script.write(f"  *Password*) echo '{password}' ;;\n")
            script.write("  *) exit 1 ;;\n")
            script.write("esac\n")
        os.chmod(path, 0o700)
    except OSError:
        os.unlink(path)
        raise
    return path


def _cleanup_askpass_script(path: Optional[str]) -> None:
    if not path:
        return
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as error:
        Logger.warn(f"failed to clean up temporary credential helper: {error}")


class GitExecutor:
    """Runs git commands with a deadline and a shared cancel flag."""

    def __init__(
        self,
        timeout_s: float = 600.0,
        cancel_event: Optional[threading.Event] = None,
        git_binary: str = "git",
    ) -> None:
        self.timeout_s = timeout_s
        self.cancel_event = cancel_event or threading.Event()
        self.git_binary = git_binary

    @contextmanager
    def auth_env(
        self,
        auth: Optional[GitAuth] = None,
        http_client: Optional[HttpClientOption] = None,
    ) -> Iterator[Dict[str, str]]:
        """Environment for one git command; the askpass helper lives only inside."""
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        askpass_script: Optional[str] = None

        if http_client is not None and http_client.proxy_url:
            for variable in _PROXY_VARIABLES:
                env[variable] = http_client.proxy_url

        try:
            if auth is not None:
                if auth.protocol == GitProtocol.SSH:
                    if auth.ssh_command:
                        env["GIT_SSH_COMMAND"] = auth.ssh_command
                elif auth.token:
                    askpass_script = _create_askpass_script(
                        auth.username or "oauth2", auth.token
                    )
                    env["GIT_ASKPASS"] = askpass_script
            yield env
        finally:
            _cleanup_askpass_script(askpass_script)

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise SyncCancelledError()

    def _execute(
        self,
        args: List[str],
        cwd: Optional[str],
        env: Optional[Dict[str, str]],
        text: bool,
    ) -> subprocess.CompletedProcess:
        self._check_cancelled()
        command = args[0] if args else "git"
        Logger.debug(f"git {' '.join(args)}")
        try:
            return subprocess.run(
                [self.git_binary, *args],
                cwd=cwd,
                check=True,
                capture_output=True,
                text=text,
                timeout=self.timeout_s,
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            Logger.security_event("GIT_TIMEOUT", f"git {command} timed out")
            raise GitOperationError(
                f"timed out after {self.timeout_s:g}s", f"git {command}"
            ) from e
        except subprocess.CalledProcessError as e:
            Logger.security_event("GIT_FAILED", f"git {command} failed")
            raise GitOperationError(
                f"exit status {e.returncode}: {self._failure_output(e)}",
                f"git {command}",
            ) from None
        except FileNotFoundError as e:
            raise GitOperationError(
                f"git executable not found: {self.git_binary}", f"git {command}"
            ) from e

    @staticmethod
    def _failure_output(error: subprocess.CalledProcessError) -> str:
        output = error.stderr or error.stdout or ""
        if isinstance(output, bytes):
            output = output.decode("utf-8", errors="replace")
        return SecurityValidator.sanitize_for_logging(output.strip())

    def run(
        self,
        args: List[str],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> str:
        return self._execute(args, cwd, env, text=True).stdout or ""

    def run_with_output(
        self,
        args: List[str],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> bytes:
        """Like ``run`` but hands back raw stdout."""
        return self._execute(args, cwd, env, text=False).stdout or b""


class GitRepository:
    """Local clone and its remotes."""

    def __init__(self, path: str, executor: GitExecutor) -> None:
        self.path = path
        self.executor = executor

    def remotes(self) -> List[str]:
        return self.executor.run(["remote"], cwd=self.path).split()

    def remote(self, name: str) -> Remote:
        url = self.executor.run(["remote", "get-url", name], cwd=self.path).strip()
        return Remote(name=name, url=url)

    def create_remote(self, name: str, url: str, mirror: bool = False) -> None:
        args = ["remote", "add"]
        if mirror:
            args.append("--mirror=fetch")
        self.executor.run([*args, name, url], cwd=self.path)

    def delete_remote(self, name: str) -> None:
        """Remove ``name``; a remote that does not exist is left alone."""
        if name not in self.remotes():
            return
        self.executor.run(["remote", "remove", name], cwd=self.path)


def set_upstream_remote_from_origin(repository: GitRepository) -> Remote:
    """Recreate the upstream remote as a mirror of origin and verify it."""
    origin = repository.remote(ORIGIN_REMOTE)
    repository.delete_remote(UPSTREAM_REMOTE)
    repository.create_remote(UPSTREAM_REMOTE, origin.url, mirror=True)

    upstream = repository.remote(UPSTREAM_REMOTE)
    if upstream.url != origin.url:
        raise GitOperationError(
            f"remote {UPSTREAM_REMOTE} points to "
            f"{SecurityValidator.mask_url_credentials(upstream.url)} instead of "
            f"{SecurityValidator.mask_url_credentials(origin.url)}",
            "set upstream remote",
        )
    return upstream


class GitBinarySourceReader:
    def __init__(self, executor: GitExecutor) -> None:
        self.executor = executor

    def clone(self, option: CloneOption) -> GitRepository:
        Logger.info(
            f"cloning {SecurityValidator.mask_url_credentials(option.url)}"
        )
        args = ["clone"]
        if option.mirror:
            args.append("--mirror")
        args.extend([option.url, option.target_path])

        with self.executor.auth_env(option.auth, option.http_client) as env:
            self.executor.run(args, env=env)

        Logger.security_event(
            "GIT_CLONE_SUCCESS", f"cloned into {option.target_path}"
        )
        return GitRepository(option.target_path, self.executor)


class GitBranchManager:
    """Keeps local branches in line with the origin's branches."""

    def __init__(
        self,
        executor: GitExecutor,
        auth: Optional[GitAuth] = None,
        http_client: Optional[HttpClientOption] = None,
    ) -> None:
        self.executor = executor
        self.auth = auth
        self.http_client = http_client

    def fetch(self, path: str) -> None:
        with self.executor.auth_env(self.auth, self.http_client) as env:
            self.executor.run(["fetch", "--all", "--prune", "--tags"], cwd=path, env=env)

    def create_tracking_branches(self, path: str) -> None:
        output = self.executor.run_with_output(["branch", "-r"], cwd=path)
        self.process_tracking_branches(path, output)

    def process_tracking_branches(self, path: str, output: bytes) -> None:
        """Create a local tracking branch for each ``origin/<branch>`` line.

        Symbolic refs (``origin/HEAD -> origin/main``) are skipped and a
        branch that already exists locally is not an error.
        """
        prefix = f"{ORIGIN_REMOTE}/"
        for raw_line in output.decode("utf-8", errors="replace").splitlines():
            remote_branch = raw_line.strip()
            if not remote_branch or "->" in remote_branch:
                continue
            if not remote_branch.startswith(prefix):
                continue

            local_branch = remote_branch[len(prefix):]
            try:
                self.executor.run(
                    ["branch", "--track", local_branch, remote_branch], cwd=path
                )
            except GitOperationError as e:
                if "already exists" not in str(e):
                    raise
                Logger.debug(f"branch already exists: {local_branch}")


class GitBinaryWriter:
    def __init__(self, executor: GitExecutor) -> None:
        self.executor = executor

    def push(self, repository: GitRepository, option: PushOption) -> None:
        Logger.info(f"pushing: {option}")
        args = ["push"]
        if option.prune:
            args.append("--prune")
        args.append(option.target)
        args.extend(option.ref_specs)

        with self.executor.auth_env(option.auth, option.http_client) as env:
            self.executor.run(args, cwd=repository.path, env=env)

        Logger.security_event("GIT_PUSH_SUCCESS", f"pushed {repository.path}")


def create_secure_temp_dir(name: str, base_dir: str) -> str:
    """Create a private per-repository directory under ``base_dir``."""
    os.makedirs(base_dir, mode=0o700, exist_ok=True)

    stat_info = os.stat(base_dir)
    if stat_info.st_mode & 0o777 != 0o700:
        Logger.security_event(
            "INSECURE_PERMISSIONS", f"fixing insecure permissions on {base_dir}"
        )
        os.chmod(base_dir, 0o700)

    clone_dir = tempfile.mkdtemp(prefix=f"{name}_", dir=base_dir)
    os.chmod(clone_dir, 0o700)
    Logger.debug(f"created temporary directory for '{name}'")
    return clone_dir


def cleanup_temp_dir(clone_dir: Optional[str], name: str) -> None:
    """Remove a clone directory, including read-only pack files."""
    if not clone_dir or not os.path.exists(clone_dir):
        return
    try:
        for root, dirs, files in os.walk(clone_dir):
            for d in dirs:
                os.chmod(os.path.join(root, d), 0o700)
            for f in files:
                os.chmod(os.path.join(root, f), 0o600)
        shutil.rmtree(clone_dir)
        Logger.security_event(
            "CLEANUP_SUCCESS", f"temporary directory cleaned up for {name}"
        )
    except OSError as e:
        Logger.security_event(
            "CLEANUP_FAILED", f"failed to clean up temporary directory for {name}"
        )
        shutil.rmtree(clone_dir, ignore_errors=True)
        Logger.warn(
            f"failed to clean up temporary directory, attempted force removal: {e}"
        )
