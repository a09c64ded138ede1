from __future__ import annotations

import logging
import subprocess
from datetime import datetime, date
from pathlib import Path
from typing import NamedTuple, Optional

log = logging.getLogger(__name__)


class GitDates(NamedTuple):
    created: Optional[date]
    modified: Optional[date]


NO_DATES = GitDates(None, None)


def _git_lines(root: Path, args: list[str]) -> list[str]:
    try:
        proc = subprocess.run(
            ["git"] + args,
            cwd=root,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        # no git binary, e.g. inside a slim container image
        return []
    if proc.returncode != 0:
        return []
    return [line.strip() for line in proc.stdout.splitlines() if line.strip()]


def git_commit_dates(root: Path, path: Path) -> GitDates:
    """Author dates of the first and last commits touching `path`.

    Returns `NO_DATES` outside a git work tree or for untracked files.
    """
    try:
        rel = path.resolve().relative_to(root.resolve())
    except ValueError:
        return NO_DATES
    # newest first, ISO 8601, e.g. 2025-03-01T10:23:45+00:00
    lines = _git_lines(
        root, ["log", "--follow", "--format=%aI", "--", rel.as_posix()]
    )
    dates: list[date] = []
    for line in lines:
        try:
            dates.append(datetime.fromisoformat(line).date())
        except ValueError:
            log.debug("! unparsable git date %r for %s", line, rel)
    if not dates:
        return NO_DATES
    return GitDates(created=dates[-1], modified=dates[0])
