# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - debugging without full tracebacks
    """
    kind: str
    message: str
    job: str | None = None
    step: str | None = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigError(CIError):
    """Bad workflow or settings. Raised at load time, before any job runs."""

    def __init__(self, message: str, *, job: str | None = None, details: dict | None = None):
        super().__init__(kind="config", message=message, job=job, details=details or {})


class ArtifactExistsError(CIError):
    """An artifact key was written twice within one run."""

    def __init__(self, key: str):
        super().__init__(kind="artifact", message=f"artifact already stored: {key}", details={"key": key})


class ReportPublishError(CIError):
    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(kind="report", message=message, details=details or {})
