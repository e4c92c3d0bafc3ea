# config.py
# Runtime settings. CLI options win; GUARDRAIL_* environment variables are
# the fallback so CI hosts can configure a run without editing the command.
from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Mapping, Optional

from .changes import ChangeSet
from .context import TriggerContext, TriggerEvent
from .errors import ConfigError
from .git_facts.git import current_branch
from .model import VerdictPolicy

DEFAULT_WORKFLOW = "guardrail_workflow.py"
DEFAULT_STATE_DIR = ".guardrail"


@dataclass(frozen=True)
class Settings:
    workers: Optional[int] = None
    policy: Optional[VerdictPolicy] = None
    artifact_dir: Path = Path(DEFAULT_STATE_DIR) / "artifacts"
    cache_dir: Path = Path(DEFAULT_STATE_DIR) / "cache"
    log_dir: Optional[Path] = None
    capabilities: FrozenSet[str] = field(default_factory=frozenset)
    compare_ref: str = "origin/main"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        workers = None
        raw_workers = env.get("GUARDRAIL_WORKERS")
        if raw_workers:
            try:
                workers = int(raw_workers)
            except ValueError:
                raise ConfigError(f"GUARDRAIL_WORKERS must be an integer, got {raw_workers!r}") from None
            if workers < 1:
                raise ConfigError(f"GUARDRAIL_WORKERS must be at least 1, got {workers}")

        raw_policy = env.get("GUARDRAIL_POLICY")
        log_dir = env.get("GUARDRAIL_LOG_DIR")
        return cls(
            workers=workers,
            policy=VerdictPolicy.parse(raw_policy) if raw_policy else None,
            artifact_dir=Path(env.get("GUARDRAIL_ARTIFACT_DIR", cls.artifact_dir)),
            cache_dir=Path(env.get("GUARDRAIL_CACHE_DIR", cls.cache_dir)),
            log_dir=Path(log_dir) if log_dir else None,
            capabilities=parse_capabilities(env.get("GUARDRAIL_CAPABILITIES", "")),
            compare_ref=env.get("GUARDRAIL_COMPARE_REF", cls.compare_ref),
        )


def parse_capabilities(raw: str) -> FrozenSet[str]:
    """"security-events:write, contents:read" -> frozenset"""
    return frozenset(c.strip() for c in raw.replace("\n", ",").split(",") if c.strip())


def trigger_context_from_env(
    environ: Optional[Mapping[str, str]] = None,
    *,
    event: Optional[str] = None,
    branch: Optional[str] = None,
) -> TriggerContext:
    """
    Resolve the trigger: explicit values, then GUARDRAIL_EVENT/BRANCH, then
    the GitHub Actions variables, then push on the current git branch.
    """
    env = os.environ if environ is None else environ

    raw_event = event or env.get("GUARDRAIL_EVENT") or env.get("GITHUB_EVENT_NAME") or TriggerEvent.PUSH.value
    raw_branch = branch or env.get("GUARDRAIL_BRANCH") or env.get("GITHUB_REF_NAME")
    if not raw_branch:
        try:
            raw_branch = current_branch()
        except (subprocess.CalledProcessError, FileNotFoundError):
            raw_branch = ""

    return TriggerContext(event=TriggerEvent.parse(raw_event), branch=raw_branch)


def changeset_from_env(
    environ: Optional[Mapping[str, str]] = None,
    *,
    changed_files: Optional[str] = None,
    compare_ref: str = "origin/main",
) -> ChangeSet:
    """Explicit list, then GUARDRAIL_CHANGED_FILES, then a git diff."""
    env = os.environ if environ is None else environ
    raw = changed_files if changed_files is not None else env.get("GUARDRAIL_CHANGED_FILES")
    if raw is not None:
        return ChangeSet.parse(raw)
    try:
        return ChangeSet.from_git(compare_ref)
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        raise ConfigError(
            "Could not compute changed files from git; pass --changed-files or set GUARDRAIL_CHANGED_FILES",
            details={"error": str(e)},
        ) from e
