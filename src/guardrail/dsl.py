# src/guardrail/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .changes import CategoryRule
from .conditions import ALWAYS, Expr
from .model import Job, Step, VerdictPolicy, Workflow


# ---------------------------------------------------------------------
# Step / rule helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    continue_on_error: bool = False,
    artifact: Optional[str] = None,
    artifact_name: Optional[str] = None,
    artifact_required: bool = False,
    findings_exit_codes: Sequence[int] = (),
    requires_files: Sequence[str] = (),
    when: Optional[Expr] = None,
    permissions: Sequence[str] = (),
) -> Step:
    """Create a shell step. `timeout` is in seconds."""
    return Step(
        name=name,
        run=cmd,
        cwd=cwd,
        env={k: str(v) for k, v in (env or {}).items()},
        timeout=timeout,
        continue_on_error=continue_on_error,
        artifact=artifact,
        artifact_name=artifact_name,
        artifact_required=artifact_required,
        findings_exit_codes=tuple(findings_exit_codes),
        requires_files=tuple(requires_files),
        when=when,
        permissions=tuple(permissions),
    )


def category(name: str, *patterns: str) -> CategoryRule:
    """category("python", "**/*.py", "requirements.txt")"""
    return CategoryRule(name, tuple(patterns))


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,
    needs: Optional[List[str]] = None,
    when: Expr = ALWAYS,
    always: bool = False,
    permissions: Optional[List[str]] = None,
    fail_on_findings: bool = False,
    env: Optional[Dict[str, str]] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
    cache_dirs: Optional[List[str]] = None,
    cache_key_files: Optional[List[str]] = None,
    cache_keep: int = 3,
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(steps_list)
    steps_final.extend(steps)

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        condition=when,
        always=always,
        permissions=list(permissions or []),
        fail_on_findings=fail_on_findings,
        env={k: str(v) for k, v in (env or {}).items()},
        cache_dirs=list(cache_dirs or []),
        cache_key_files=list(cache_key_files or []),
        cache_keep=cache_keep,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._condition: Expr = ALWAYS
        self._always = False
        self._permissions: list[str] = []
        self._fail_on_findings = False
        self._env: dict[str, str] = {}
        self._cache_dirs: list[str] = []
        self._cache_key_files: list[str] = []
        self._cache_keep = 3

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def when(self, condition: Expr):
        self._condition = condition
        return self

    def always_run(self, enabled: bool = True):
        self._always = enabled
        return self

    def require_permissions(self, *capabilities: str):
        self._permissions.extend(capabilities)
        return self

    def fail_on_findings(self, enabled: bool = True):
        self._fail_on_findings = enabled
        return self

    def define_step(self, name: str, run: str, **options: Any):
        self._steps.append(sh(name, run, **options))
        return self

    def add_step(self, step: Step):
        self._steps.append(step)
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def cache(self, *dirs: str, key_files: Iterable[str] = (), keep: int = 3):
        self._cache_dirs = list(dirs)
        self._cache_key_files = list(key_files)
        self._cache_keep = keep
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")
        return Job(
            name=self.name,
            steps=list(self._steps),
            needs=list(self._needs),
            condition=self._condition,
            always=self._always,
            permissions=list(self._permissions),
            fail_on_findings=self._fail_on_findings,
            env=dict(self._env),
            cache_dirs=list(self._cache_dirs),
            cache_key_files=list(self._cache_key_files),
            cache_keep=self._cache_keep,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('sast').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("config", ["p/python", "p/secrets"]).jobs(
            lambda v: job(f"semgrep-{v.split('/')[-1]}", semgrep_step(config=v))
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def jobs(self, builder: Callable[[Any], Job]) -> List[Job]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Workflow helper
# ---------------------------------------------------------------------

def wf(
    *jobs: "Job | List[Job]",
    rules: Optional[Sequence[CategoryRule]] = None,
    name: str = "workflow",
    policy: "str | VerdictPolicy | None" = None,
) -> Workflow:
    """
    Workflow definition helper:

        from guardrail import wf, job, sh, category, flag

        def workflow():
            return wf(
                job("sast", sh(...), when=flag("python")),
                rules=[category("python", "**/*.py")],
            )

    Matrix job lists can be passed directly; they are flattened.
    """
    flat: List[Job] = []
    for j in jobs:
        if isinstance(j, list):
            flat.extend(j)
        else:
            flat.append(j)
    return Workflow(
        jobs=flat,
        rules=list(rules or []),
        name=name,
        policy=VerdictPolicy.parse(policy) if policy is not None else None,
    )
