# changes.py
# Change detection: classify the files touched by a trigger into named
# categories ("python", "docs", ...) using glob rules.
from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Iterable, List, Optional, Sequence, Tuple

from .context import CategoryFlags
from .errors import ConfigError
from .git_facts.git import (
    changed_files as changed_files_between,
    is_dirty,
    list_files,
    merge_base,
    repo_root,
    working_tree_changes,
)


# ----------------------------------------------------------------------
# Glob matching
# ----------------------------------------------------------------------
# Patterns are root-anchored and matched segment by segment:
#   "*" / "?" / "[...]"  stay inside one segment (fnmatchcase)
#   "**"                 a whole segment, matches zero or more segments
#   "docs/"              anything under docs/
# fnmatch alone lets "*" cross "/" and never lets "**/x" match a top-level x.

def _check_brackets(segment: str, pattern: str) -> None:
    i, n = 0, len(segment)
    while i < n:
        if segment[i] == "[":
            j = i + 1
            if j < n and segment[j] == "!":
                j += 1
            if j < n and segment[j] == "]":
                j += 1
            while j < n and segment[j] != "]":
                j += 1
            if j >= n:
                raise ConfigError(f"Unclosed '[' in glob pattern: {pattern!r}")
            i = j
        i += 1


def compile_glob(pattern: str) -> Tuple[str, ...]:
    """Validate `pattern` and split it into match segments."""
    if not isinstance(pattern, str) or not pattern.strip():
        raise ConfigError(f"Empty glob pattern: {pattern!r}")

    pat = pattern.strip().replace("\\", "/")
    if pat.startswith("./"):
        pat = pat[2:]
    pat = pat.lstrip("/")
    if pat.endswith("/"):
        pat += "**"

    segments = tuple(s for s in pat.split("/") if s != "")
    if not segments:
        raise ConfigError(f"Glob pattern has no path segments: {pattern!r}")

    for seg in segments:
        if "**" in seg and seg != "**":
            raise ConfigError(
                f"'**' must be a whole path segment in glob pattern: {pattern!r}",
                details={"segment": seg},
            )
        _check_brackets(seg, pattern)
    return segments


def _match_segments(pat: Sequence[str], parts: Sequence[str]) -> bool:
    if not pat:
        return not parts
    head = pat[0]
    if head == "**":
        # zero or more segments
        return any(_match_segments(pat[1:], parts[i:]) for i in range(len(parts) + 1))
    if not parts:
        return False
    return fnmatchcase(parts[0], head) and _match_segments(pat[1:], parts[1:])


def glob_match(path: str, pattern: "str | Tuple[str, ...]") -> bool:
    segments = compile_glob(pattern) if isinstance(pattern, str) else pattern
    parts = [p for p in normalize_path(path).split("/") if p]
    return _match_segments(segments, parts)


def normalize_path(path: str) -> str:
    p = str(path).strip().replace("\\", "/")
    while p.startswith("./"):
        p = p[2:]
    return p.lstrip("/")


# ----------------------------------------------------------------------
# Rules + change-set
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class CategoryRule:
    """A named group of glob patterns. Patterns are validated on construction."""
    name: str
    patterns: Tuple[str, ...] = ()
    _compiled: Tuple[Tuple[str, ...], ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("Category rule needs a name")
        if isinstance(self.patterns, str):
            raise ConfigError(
                f"Category {self.name!r}: patterns must be a list, not a string",
                details={"patterns": self.patterns},
            )
        patterns = tuple(self.patterns)
        compiled = []
        for p in patterns:
            try:
                compiled.append(compile_glob(p))
            except ConfigError as e:
                raise ConfigError(f"Category {self.name!r}: {e.message}", details=e.details) from e
        object.__setattr__(self, "patterns", patterns)
        object.__setattr__(self, "_compiled", tuple(compiled))

    def matches(self, path: str) -> bool:
        parts = [p for p in normalize_path(path).split("/") if p]
        return any(_match_segments(c, parts) for c in self._compiled)


@dataclass(frozen=True)
class ChangeSet:
    """Ordered, de-duplicated, repo-relative paths touched by the trigger."""
    paths: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        seen = set()
        ordered: List[str] = []
        for raw in self.paths:
            p = normalize_path(raw)
            if p and p not in seen:
                seen.add(p)
                ordered.append(p)
        object.__setattr__(self, "paths", tuple(ordered))

    def __iter__(self):
        return iter(self.paths)

    def __len__(self) -> int:
        return len(self.paths)

    @classmethod
    def of(cls, paths: Iterable[str]) -> "ChangeSet":
        return cls(tuple(paths))

    @classmethod
    def parse(cls, text: str) -> "ChangeSet":
        """Parse a newline- or comma-separated list of paths."""
        items = [s for line in text.splitlines() for s in line.split(",")]
        return cls(tuple(s.strip() for s in items if s.strip()))

    @classmethod
    def from_git(cls, compare_ref: str = "origin/main", cwd: Optional[str] = None) -> "ChangeSet":
        """
        Compute the change-set from the checkout containing `cwd`:
          - dirty tree: staged + unstaged + untracked files
          - clean tree: merge-base(compare_ref)..HEAD, falling back to
            HEAD~1, then to every tracked file (first commit)
        """
        root = str(repo_root(cwd=cwd))
        if is_dirty(cwd=root):
            return cls(tuple(working_tree_changes(cwd=root)))
        try:
            base: Optional[str] = merge_base(compare_ref, cwd=root)
        except subprocess.CalledProcessError:
            # no remote configured, unrelated histories, ...
            base = "HEAD~1"
        try:
            return cls(tuple(changed_files_between(base, "HEAD", cwd=root)))
        except subprocess.CalledProcessError:
            return cls(tuple(list_files(cwd=root)))


def detect(changeset: "ChangeSet | Iterable[str]", rules: Sequence[CategoryRule]) -> CategoryFlags:
    """flag[rule.name] is True iff some changed path matches some rule pattern."""
    paths = changeset.paths if isinstance(changeset, ChangeSet) else ChangeSet.of(changeset).paths
    flags = {}
    for rule in rules:
        flags[rule.name] = any(rule.matches(p) for p in paths)
    return CategoryFlags(flags)
