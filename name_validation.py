#!/usr/bin/env python3
"""Repository name rules of the supported providers."""

import re

GITHUB_MAX_NAME_LENGTH = 100
GITLAB_MAX_NAME_LENGTH = 255
GITEA_MAX_NAME_LENGTH = 100

_GITHUB_NAME = re.compile(r"[A-Za-z0-9_-]+")
_GITHUB_RESERVED = {".", ".."}

_GITEA_NAME = re.compile(r"[A-Za-z0-9.-]+")
_GITEA_RESERVED = {".", ".."}

_GITLAB_NAME = re.compile(r"[a-zA-Z0-9_][a-zA-Z0-9_.+\- ]*")

# See https://docs.gitlab.com/ee/user/reserved_names.html
_GITLAB_RESERVED = {
    "-",
    "badges",
    "blame",
    "blob",
    "builds",
    "commits",
    "create",
    "create_dir",
    "edit",
    "environments/folders",
    "files",
    "find_file",
    "gitlab-lfs/objects",
    "info/lfs/objects",
    "new",
    "preview",
    "raw",
    "refs",
    "tree",
    "update",
    "wikis",
}


def is_valid_github_name(name: str) -> bool:
    if not name or len(name) > GITHUB_MAX_NAME_LENGTH:
        return False
    if name.lower() in _GITHUB_RESERVED:
        return False
    return bool(_GITHUB_NAME.fullmatch(name))


def is_valid_gitlab_name(name: str) -> bool:
    if not name or len(name) > GITLAB_MAX_NAME_LENGTH:
        return False
    if name[0] in "-._" or name.endswith("_"):
        return False
    if name.lower() in _GITLAB_RESERVED:
        return False
    return bool(_GITLAB_NAME.fullmatch(name))


def is_valid_gitea_name(name: str) -> bool:
    if not name or len(name) > GITEA_MAX_NAME_LENGTH:
        return False
    if name in _GITEA_RESERVED:
        return False
    return bool(_GITEA_NAME.fullmatch(name))
