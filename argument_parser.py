#!/usr/bin/env python3
"""Command line argument parsing and configuration building."""

from __future__ import annotations

import argparse
import os
import sys
from typing import List, Optional, Sequence

from config import (DEFAULT_API_URLS, Config, GitOperationConfig, GitProtocol,
                    MirrorSettings, OwnerType, ProviderConfig, ProviderType,
                    RepositoryFilterConfig, RunConfig, Visibility)
from errors import EXIT_AUTH_ERROR, EXIT_CONFIG_ERROR, FilterConfigError
from filtering import parse_duration
from logging_utils import Logger
from security import SecurityValidator

SIDES = ("source", "target")
MAX_WORKERS = 32


def _create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        prog="provider-sync",
        description="Mirror repositories from one git hosting provider to another",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --source-provider gitlab --source-owner team --source-owner-type group \\
           --target-provider github --target-owner team --target-owner-type group
  %(prog)s ... --dry-run --active-from-limit=-720h
  %(prog)s ... --include api,web --protect --force-push
  %(prog)s --source-provider github --source-owner me \\
           --target-provider gitlab --target-url https://gitlab.company.com \\
           --target-owner me --target-protocol ssh
  %(prog)s --source-provider gitlab --source-owner team --source-owner-type group \\
           --target-provider gitea --target-url https://gitea.company.com \\
           --target-owner team --target-owner-type group

Tokens may be passed through the SOURCE_TOKEN and TARGET_TOKEN env vars.
        """,
    )
    return parser


def _add_provider_arguments(parser: argparse.ArgumentParser, side: str) -> None:
    """Add the connection arguments of one side of the sync."""
    group = parser.add_argument_group(f"{side} provider")
    group.add_argument(
        f"--{side}-provider",
        dest=f"{side}_provider",
        required=True,
        choices=[provider.value for provider in ProviderType],
        help=f"Hosting provider of the {side}",
    )
    group.add_argument(
        f"--{side}-url",
        dest=f"{side}_url",
        help=f"API base URL of the {side} (default: the provider's public API)",
    )
    group.add_argument(
        f"--{side}-token",
        dest=f"{side}_token",
        help=f"API token of the {side} (or set {side.upper()}_TOKEN env var)",
    )
    group.add_argument(
        f"--{side}-owner",
        dest=f"{side}_owner",
        required=True,
        help=f"User or group/organization owning the {side} repositories",
    )
    group.add_argument(
        f"--{side}-owner-type",
        dest=f"{side}_owner_type",
        choices=[owner_type.value for owner_type in OwnerType],
        default=OwnerType.USER.value,
        help="Whether the owner is a user or a group/organization (default: user)",
    )
    group.add_argument(
        f"--{side}-username",
        dest=f"{side}_username",
        default="",
        help="Username for HTTPS git auth (default: provider's token user)",
    )
    group.add_argument(
        f"--{side}-protocol",
        dest=f"{side}_protocol",
        choices=[protocol.value for protocol in GitProtocol],
        default=GitProtocol.HTTPS.value,
        help="Git transport: https or ssh (default: https)",
    )
    group.add_argument(
        f"--{side}-ssh-command",
        dest=f"{side}_ssh_command",
        default="",
        help="Value for GIT_SSH_COMMAND when using ssh",
    )


def _add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("filters")
    group.add_argument(
        "-i",
        "--include",
        dest="include",
        action="append",
        default=[],
        help="Repository names to sync (comma separated, repeatable); "
        "makes --exclude irrelevant",
    )
    group.add_argument(
        "-e",
        "--exclude",
        dest="exclude",
        action="append",
        default=[],
        help="Repository names to skip (comma separated, repeatable)",
    )
    group.add_argument(
        "--include-forks",
        action="store_true",
        dest="include_forks",
        help="Also sync forked repositories",
    )
    group.add_argument(
        "--active-from-limit",
        dest="active_from_limit",
        help="Only sync repositories active within this duration, "
        "e.g. --active-from-limit=-24h",
    )


def _add_behavior_arguments(parser: argparse.ArgumentParser) -> None:
    """Add behavior and configuration arguments to parser."""
    parser.add_argument(
        "-d",
        "--dry-run",
        action="store_true",
        dest="dry_run",
        help="List actions without doing them",
    )
    parser.add_argument(
        "-f",
        "--force-push",
        action="store_true",
        dest="force_push",
        help="Overwrite diverged branches and tags at the target",
    )
    parser.add_argument(
        "--ignore-invalid-name",
        action="store_true",
        dest="ignore_invalid_name",
        help="Skip repositories whose name is invalid at the target "
        "instead of aborting",
    )
    parser.add_argument(
        "--ascii-name",
        action="store_true",
        dest="ascii_name",
        help="Strip non-alphanumeric characters from target repository names",
    )
    parser.add_argument(
        "--disable-features",
        action="store_true",
        dest="disabled_features",
        help="Disable issues, wiki, CI and similar features on created repositories",
    )
    parser.add_argument(
        "--protect",
        action="store_true",
        dest="protect",
        help="Protect branches and tags at the target after each push",
    )
    parser.add_argument(
        "--description-prefix",
        dest="description_prefix",
        help="Prefix for descriptions of created repositories",
    )
    parser.add_argument(
        "--visibility",
        dest="visibility",
        choices=[visibility.value for visibility in Visibility],
        help="Visibility of created repositories (default: mapped from the source)",
    )
    parser.add_argument(
        "-w",
        "--workers",
        dest="workers",
        type=int,
        default=1,
        help=f"Repositories synced in parallel (1-{MAX_WORKERS}, default: 1)",
    )
    parser.add_argument(
        "--git-timeout",
        dest="git_timeout_s",
        type=float,
        default=600.0,
        help="Seconds before a git command is aborted (default: 600)",
    )
    parser.add_argument(
        "--api-timeout",
        dest="api_timeout_s",
        type=float,
        default=30.0,
        help="Seconds before a provider API request is aborted (default: 30)",
    )
    parser.add_argument(
        "--clone-temp-dir",
        dest="clone_temp_dir",
        default="/tmp/provider-sync",
        help="Temporary directory for git clones (default: /tmp/provider-sync)",
    )
    parser.add_argument(
        "--proxy",
        dest="proxy_url",
        default="",
        help="HTTP(S) proxy for git transport",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        dest="quiet",
        help="Only print warnings and errors",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        dest="verbose",
        help="Print debug output",
    )


def _split_names(values: Sequence[str]) -> List[str]:
    names: List[str] = []
    for value in values:
        for name in value.split(","):
            name = name.strip()
            if name and name not in names:
                names.append(name)
    return names


def _config_error(message: str) -> None:
    Logger.security_event(
        "CONFIG_VALIDATION_FAILED", f"configuration validation failed: {message}"
    )
    Logger.error(f"configuration validation error: {message}")
    sys.exit(EXIT_CONFIG_ERROR)


def _get_token(args, side: str) -> str:
    token = getattr(args, f"{side}_token") or os.getenv(f"{side.upper()}_TOKEN")
    if not token:
        Logger.error(
            f"error: {side} token not provided "
            f"(use --{side}-token or {side.upper()}_TOKEN)"
        )
        sys.exit(EXIT_AUTH_ERROR)
    return token


def _build_provider_config(args, side: str) -> ProviderConfig:
    provider_type = ProviderType(getattr(args, f"{side}_provider"))
    url = getattr(args, f"{side}_url") or DEFAULT_API_URLS[provider_type]
    token = _get_token(args, side)
    try:
        validated_url = SecurityValidator.validate_url(url, ["https", "http"])
        validated_owner = SecurityValidator.validate_owner(getattr(args, f"{side}_owner"))
    except ValueError as e:
        _config_error(f"{side}: {e}")

    return ProviderConfig(
        provider_type=provider_type,
        url=validated_url,
        token=token,
        owner=validated_owner,
        owner_type=OwnerType(getattr(args, f"{side}_owner_type")),
        username=getattr(args, f"{side}_username"),
        protocol=GitProtocol(getattr(args, f"{side}_protocol")),
        ssh_command=getattr(args, f"{side}_ssh_command"),
    )


def _validate_parsed_arguments(args) -> str:
    """Validate numeric, duration and path inputs; return the clone directory."""
    try:
        validated_clone_temp_dir = SecurityValidator.validate_file_path(
            args.clone_temp_dir
        )
        if args.proxy_url:
            SecurityValidator.validate_url(args.proxy_url, ["https", "http"])
    except ValueError as e:
        _config_error(str(e))

    if not 1 <= args.workers <= MAX_WORKERS:
        _config_error(f"workers must be between 1 and {MAX_WORKERS}")
    if args.git_timeout_s <= 0 or args.api_timeout_s <= 0:
        _config_error("timeouts must be positive")

    if args.active_from_limit:
        try:
            parse_duration(args.active_from_limit)
        except FilterConfigError as e:
            _config_error(str(e))

    Logger.security_event(
        "CONFIG_VALIDATION", "successfully validated all configuration inputs"
    )
    return validated_clone_temp_dir


def parse_arguments(argv: Optional[Sequence[str]] = None) -> Config:
    """Parse command line arguments and return configuration object."""
    parser = _create_argument_parser()
    for side in SIDES:
        _add_provider_arguments(parser, side)
    _add_filter_arguments(parser)
    _add_behavior_arguments(parser)

    args = parser.parse_args(argv)
    Logger.configure(quiet=args.quiet, verbose=args.verbose)

    validated_clone_temp_dir = _validate_parsed_arguments(args)
    source = _build_provider_config(args, "source")
    target = _build_provider_config(args, "target")

    return Config(
        source=source,
        target=target,
        filters=RepositoryFilterConfig(
            include=_split_names(args.include),
            exclude=_split_names(args.exclude),
            include_forks=args.include_forks,
            active_from_limit=args.active_from_limit,
        ),
        mirror=MirrorSettings(
            force_push=args.force_push,
            disabled_features=args.disabled_features,
            protect=args.protect,
            ignore_invalid_name=args.ignore_invalid_name,
            ascii_name=args.ascii_name,
            description_prefix=args.description_prefix,
            visibility=Visibility(args.visibility) if args.visibility else None,
        ),
        git=GitOperationConfig(
            clone_temp_dir=validated_clone_temp_dir,
            git_timeout_s=args.git_timeout_s,
            api_timeout_s=args.api_timeout_s,
            proxy_url=args.proxy_url,
        ),
        run=RunConfig(
            dry_run=args.dry_run,
            workers=args.workers,
            quiet=args.quiet,
            verbose=args.verbose,
        ),
    )
