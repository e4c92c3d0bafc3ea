# step_workflows/security.py
# Step factories for the scanners a security workflow usually runs.
# Each knows its tool's "findings" exit code and report file, so a workflow
# only picks targets and policy.
from __future__ import annotations

import shlex
from typing import Optional, Sequence

from ..conditions import Expr
from ..dsl import sh
from ..model import Step

# exit codes that mean "scan completed, issues found"
BANDIT_FINDINGS = (1,)
SEMGREP_FINDINGS = (1,)
GITLEAKS_FINDINGS = (1,)
SAFETY_FINDINGS = (64,)


def bandit_step(
    name: str = "Run Bandit (Python SAST)",
    *,
    target: str = ".",
    output: str = "bandit-results.json",
    timeout: Optional[float] = 10 * 60,
    extra_args: str = "",
    cwd: str | None = None,
) -> Step:
    cmd = f"bandit -r {shlex.quote(target)} -f json -o {shlex.quote(output)}"
    if extra_args:
        cmd = f"{cmd} {extra_args}"
    return sh(
        name,
        cmd,
        cwd=cwd,
        timeout=timeout,
        artifact=output,
        findings_exit_codes=BANDIT_FINDINGS,
    )


def semgrep_step(
    name: str = "Run Semgrep",
    *,
    config: str = "p/python",
    output: str = "semgrep-results.sarif",
    timeout: Optional[float] = 15 * 60,
    continue_on_error: bool = True,
    when: Optional[Expr] = None,
    cwd: str | None = None,
) -> Step:
    cmd = (
        f"semgrep scan --config {shlex.quote(config)} --sarif "
        f"--output {shlex.quote(output)} --error"
    )
    return sh(
        name,
        cmd,
        cwd=cwd,
        timeout=timeout,
        continue_on_error=continue_on_error,
        artifact=output,
        findings_exit_codes=SEMGREP_FINDINGS,
        when=when,
    )


def gitleaks_step(
    name: str = "Run GitLeaks",
    *,
    source: str = ".",
    output: str = "gitleaks-report.json",
    timeout: Optional[float] = 10 * 60,
    continue_on_error: bool = True,
    cwd: str | None = None,
) -> Step:
    cmd = (
        f"gitleaks detect --source {shlex.quote(source)} --report-format json "
        f"--report-path {shlex.quote(output)} --exit-code 1"
    )
    return sh(
        name,
        cmd,
        cwd=cwd,
        timeout=timeout,
        continue_on_error=continue_on_error,
        artifact=output,
        findings_exit_codes=GITLEAKS_FINDINGS,
    )


def safety_step(
    name: str = "Run Safety Check",
    *,
    requirements: str = "requirements.txt",
    output: str = "safety-results.json",
    timeout: Optional[float] = 5 * 60,
    cwd: str | None = None,
) -> Step:
    """Dependency audit. A no-op when the requirements file is absent."""
    cmd = f"safety check --file {shlex.quote(requirements)} --json > {shlex.quote(output)}"
    return sh(
        name,
        cmd,
        cwd=cwd,
        timeout=timeout,
        artifact=output,
        findings_exit_codes=SAFETY_FINDINGS,
        requires_files=(requirements,),
    )


def pip_install_step(
    name: str = "Install scanners",
    *,
    packages: Sequence[str],
    requirements: Optional[str] = "requirements.txt",
    timeout: Optional[float] = 10 * 60,
    cwd: str | None = None,
) -> Step:
    """pip-install the scanner packages (and the project's requirements if present)."""
    cmd = "python -m pip install --upgrade pip && pip install " + " ".join(shlex.quote(p) for p in packages)
    if requirements:
        req = shlex.quote(requirements)
        cmd += f" && if [ -f {req} ]; then pip install -r {req}; fi"
    return sh(name, cmd, cwd=cwd, timeout=timeout)
