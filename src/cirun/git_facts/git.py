# git.py
# Small, focused wrapper around the Git CLI.
# The CLI uses it to fill in event metadata (ref, repository name) when
# the user does not pass them explicitly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def repo_root(cwd: Optional[str] = None) -> Path:
    """Absolute path to the root of the current Git repository."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> str:
    """
    Name of the checked-out branch.

    On a detached HEAD git prints "HEAD"; we fall back to the commit SHA
    in that case so the value can still be matched against (and will not
    accidentally match) branch filters.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if name == "HEAD":
        return head_sha(cwd=cwd)
    return name


def get_remote_url(remote: str = "origin", cwd: Optional[str] = None) -> str:
    """URL configured for `remote`."""
    return _git(["remote", "get-url", remote], cwd=cwd)


def repository_name(cwd: Optional[str] = None) -> str:
    """Short repository name from the origin URL, else the directory name."""
    try:
        url = get_remote_url("origin", cwd=cwd)
        return url.rstrip("/").split("/")[-1].replace(".git", "")
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path(cwd or ".").resolve().name
