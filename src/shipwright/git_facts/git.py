# git.py
# Small wrapper around the Git CLI, used to stamp builds with the commit
# they were made from.

from __future__ import annotations

import subprocess
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises CalledProcessError when git fails (not a repository, no commits)
    and FileNotFoundError when git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of HEAD."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def is_dirty(cwd: Optional[str] = None) -> bool:
    # any porcelain output means uncommitted changes
    return _git(["status", "--porcelain"], cwd=cwd) != ""
