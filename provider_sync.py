#!/usr/bin/env python3
"""
provider-sync - Mirror repositories from one git hosting provider to another.

Discovers the repositories of a GitHub, GitLab or Gitea user or group, filters them
by name and recent activity, creates missing repositories at the target and
pushes every branch and tag there, optionally lifting and restoring branch
protection around the push.
"""

from __future__ import annotations

import sys
from typing import NoReturn

from argument_parser import parse_arguments
from sync_orchestrator import SyncOrchestrator


def main() -> NoReturn:
    cfg = parse_arguments()
    orchestrator = SyncOrchestrator(cfg)
    sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
