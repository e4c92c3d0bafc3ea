# model.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from .conditions import ALWAYS, Expr

if TYPE_CHECKING:
    from .changes import CategoryRule


class StepOutcome(str, Enum):
    SUCCESS = "success"
    FINDINGS = "findings"      # tool ran and reported issues via a declared exit code
    FAILED = "failed"          # unhandled nonzero exit
    ERROR = "error"            # tool could not start, or crashed
    TIMEOUT = "timeout"
    SKIPPED = "skipped"        # no-op: missing optional input or `when` false
    CANCELLED = "cancelled"


class JobState(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class VerdictPolicy(str, Enum):
    OBSERVE_ONLY = "observe-only"
    STRICT = "strict"

    @classmethod
    def parse(cls, value: "str | VerdictPolicy") -> "VerdictPolicy":
        from .errors import ConfigError

        if isinstance(value, VerdictPolicy):
            return value
        raw = str(value).strip().lower().replace("_", "-")
        if raw == "observe":
            raw = cls.OBSERVE_ONLY.value
        try:
            return cls(raw)
        except ValueError:
            raise ConfigError(
                f"Unknown verdict policy: {value!r}",
                details={"expected": ", ".join(p.value for p in cls)},
            ) from None


class Verdict(str, Enum):
    SUCCESS = "success"
    COMPLETED = "completed"    # observe-only: failures reported, run not failed
    FAILURE = "failure"


@dataclass(frozen=True)
class Step:
    """A single external-tool invocation inside a job."""
    name: str
    run: str
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None                 # seconds
    continue_on_error: bool = False
    artifact: Optional[str] = None                  # path relative to cwd
    artifact_name: Optional[str] = None
    artifact_required: bool = False
    findings_exit_codes: Tuple[int, ...] = ()
    requires_files: Tuple[str, ...] = ()            # optional inputs; step is a no-op without them
    when: Optional[Expr] = None
    permissions: Tuple[str, ...] = ()               # optional capabilities; step is a no-op without them

    @property
    def artifact_key(self) -> Optional[str]:
        if self.artifact is None:
            return None
        return self.artifact_name or PurePosixPath(self.artifact).name


@dataclass
class Job:
    """
    A CI job: ordered steps + run condition + dependencies.

    `always` makes the job run once its dependencies have finished, whatever
    their outcome (the report/finalize pattern).
    """
    name: str
    steps: list[Step]
    needs: list[str] = field(default_factory=list)
    condition: Expr = ALWAYS
    always: bool = False
    permissions: list[str] = field(default_factory=list)
    fail_on_findings: bool = False
    env: Dict[str, str] = field(default_factory=dict)

    # tool cache
    cache_dirs: list[str] = field(default_factory=list)
    cache_key_files: list[str] = field(default_factory=list)
    cache_keep: int = 3


@dataclass
class Workflow:
    jobs: List[Job]
    rules: List["CategoryRule"] = field(default_factory=list)
    name: str = "workflow"
    policy: Optional[VerdictPolicy] = None


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class StepResult:
    name: str
    outcome: StepOutcome
    exit_code: Optional[int] = None
    escalate: bool = False
    duration: float = 0.0
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "escalate": self.escalate,
            "duration": round(self.duration, 3),
            "message": self.message,
        }


@dataclass(frozen=True)
class ArtifactRef:
    key: str           # "<job>/<artifact name>"
    path: str          # where the store keeps it
    sha256: str
    size: int

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "path": self.path, "sha256": self.sha256, "size": self.size}


@dataclass(frozen=True)
class JobResult:
    name: str
    state: JobState
    steps: Tuple[StepResult, ...] = ()
    artifacts: Tuple[ArtifactRef, ...] = ()
    reason: str = ""

    @property
    def executed(self) -> bool:
        return any(s.outcome is not StepOutcome.SKIPPED for s in self.steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "reason": self.reason,
            "steps": [s.to_dict() for s in self.steps],
            "artifacts": [a.to_dict() for a in self.artifacts],
        }


@dataclass(frozen=True)
class RunReport:
    results: Mapping[str, JobResult]
    policy: VerdictPolicy
    overall: Verdict
    any_failed: bool
    cancelled: bool = False

    def __post_init__(self) -> None:
        ordered = {name: self.results[name] for name in sorted(self.results)}
        object.__setattr__(self, "results", MappingProxyType(ordered))

    def failed_jobs(self) -> List[str]:
        return [n for n, r in self.results.items() if r.state is JobState.FAILURE]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": self.overall.value,
            "policy": self.policy.value,
            "any_failed": self.any_failed,
            "cancelled": self.cancelled,
            "jobs": {name: r.to_dict() for name, r in self.results.items()},
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, indent=2, ensure_ascii=False)
