# git.py
# Thin wrapper around the Git CLI. Everything that needs repository facts
# (change-sets, branch names, remotes) goes through here. Helpers run in the
# process cwd unless `cwd` is given.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Run `git <args>` and return stdout without surrounding whitespace.

    Raises subprocess.CalledProcessError on a non-zero exit and
    FileNotFoundError when git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def _lines(out: str) -> List[str]:
    return out.splitlines() if out else []


def repo_root(cwd: Optional[str] = None) -> Path:
    """Absolute path of the enclosing repository's top-level directory."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str] = None) -> str:
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> str:
    """
    Name of the checked-out branch.

    On a detached HEAD (typical for CI checkouts) this returns the short SHA.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if name == "HEAD":
        return _git(["rev-parse", "--short", "HEAD"], cwd=cwd)
    return name


def is_dirty(cwd: Optional[str] = None) -> bool:
    """True if there are modified, staged or untracked files."""
    return _git(["status", "--porcelain"], cwd=cwd) != ""


def working_tree_changes(cwd: Optional[str] = None) -> List[str]:
    """Unstaged, staged and untracked paths, sorted."""
    files = set()
    files.update(_lines(_git(["diff", "--name-only"], cwd=cwd)))
    files.update(_lines(_git(["diff", "--name-only", "--cached"], cwd=cwd)))
    files.update(_lines(_git(["ls-files", "--others", "--exclude-standard"], cwd=cwd)))
    return sorted(files)


def changed_files(base: str, head: str = "HEAD", cwd: Optional[str] = None) -> List[str]:
    """Paths (relative to repo root) changed between two refs."""
    return _lines(_git(["diff", "--name-only", f"{base}..{head}"], cwd=cwd))


def merge_base(with_ref: str = "origin/main", cwd: Optional[str] = None) -> str:
    """Common ancestor of HEAD and `with_ref`."""
    return _git(["merge-base", "HEAD", with_ref], cwd=cwd)


def list_files(cwd: Optional[str] = None) -> List[str]:
    """Every tracked file."""
    return _lines(_git(["ls-files"], cwd=cwd))


def get_remote_url(remote: str = "origin", cwd: Optional[str] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)
