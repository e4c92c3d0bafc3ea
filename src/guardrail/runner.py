# runner.py
from __future__ import annotations

import os
import re
import runpy
import shlex
import signal
import subprocess
import tarfile
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

from .artifacts import ArtifactStore, collect
from .cache import ToolCache
from .changes import CategoryRule, ChangeSet, detect
from .conditions import evaluate
from .context import CategoryFlags, TriggerContext
from .dag import build_dag, topo_levels, validate_dag
from .errors import ConfigError
from .model import Job, JobResult, JobState, RunReport, Step, StepOutcome, StepResult, VerdictPolicy, Workflow
from .report import aggregate
from .ui.console import get_console

TOOL_HINTS = {
    "bandit": "Install bandit (e.g., pip install bandit).",
    "semgrep": "Install semgrep (e.g., pip install semgrep).",
    "safety": "Install safety (e.g., pip install safety).",
    "gitleaks": "Install gitleaks (https://github.com/gitleaks/gitleaks/releases) or fix PATH.",
    "pip": "Install pip or fix PATH.",
    "python3": "Install Python 3 or fix PATH (python3).",
}

# shell exit codes for "command not found" / "not executable"
_NOT_FOUND_CODES = (126, 127)
POLL_INTERVAL = 0.1
TERMINATE_GRACE = 5.0


@dataclass(frozen=True)
class ExecutionEnvironment:
    """Everything a job run may read. Shared read-only by all workers."""
    repo_root: Path
    ctx: TriggerContext = field(default_factory=TriggerContext)
    flags: CategoryFlags = field(default_factory=CategoryFlags)
    capabilities: FrozenSet[str] = frozenset()
    extra_env: Mapping[str, str] = field(default_factory=dict)
    log_dir: Optional[Path] = None
    cancel: threading.Event = field(default_factory=threading.Event)

    def is_cancelled(self) -> bool:
        return self.cancel.is_set()


# ----------------------------------------------------------------------
# Workflow loading (local python file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a python file.

    The file must define either:
      - workflow() -> Workflow | List[Job]
      - JOBS = [Job, ...]
    and may define RULES = [CategoryRule, ...] and POLICY = "strict" | "observe-only"
    when it does not return a Workflow.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise ConfigError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ConfigError(f"Workflow must be a .py file, got: {wf_path.name}")

    globals_dict = runpy.run_path(str(wf_path), run_name=f"guardrail_workflow_{wf_path.stem}")

    loaded = None
    if callable(globals_dict.get("workflow")):
        loaded = globals_dict["workflow"]()
    elif "JOBS" in globals_dict:
        loaded = globals_dict["JOBS"]

    if isinstance(loaded, Workflow):
        wf = loaded
    elif isinstance(loaded, list) and all(isinstance(j, Job) for j in loaded):
        policy = globals_dict.get("POLICY")
        wf = Workflow(
            jobs=loaded,
            rules=list(globals_dict.get("RULES", [])),
            name=wf_path.stem,
            policy=VerdictPolicy.parse(policy) if policy is not None else None,
        )
    else:
        raise ConfigError(
            "Workflow must return/define a Workflow or List[Job]. "
            "Define workflow() -> Workflow or JOBS = [Job, ...].",
            details={"file": str(wf_path)},
        )

    validate_workflow(wf)
    return wf


def validate_workflow(wf: Workflow) -> List[List[str]]:
    """Load-time checks. Raises ConfigError; returns the DAG stages."""
    console = get_console()

    rule_names = set()
    for rule in wf.rules:
        if not isinstance(rule, CategoryRule):
            raise ConfigError(f"RULES must contain CategoryRule objects, got {rule!r}")
        if rule.name in rule_names:
            raise ConfigError(f"Duplicate category rule: {rule.name!r}")
        rule_names.add(rule.name)

    for job in wf.jobs:
        if not job.name or "/" in job.name:
            raise ConfigError(f"Invalid job name: {job.name!r}", job=job.name)
        if not job.steps:
            raise ConfigError(f"Job '{job.name}' has no steps", job=job.name)
        step_names = [s.name for s in job.steps]
        if len(set(step_names)) != len(step_names):
            raise ConfigError(f"Job '{job.name}' has duplicate step names", job=job.name)
        artifact_keys = [s.artifact_key for s in job.steps if s.artifact_key]
        if len(set(artifact_keys)) != len(artifact_keys):
            raise ConfigError(f"Job '{job.name}' declares the same artifact name twice", job=job.name)

        referenced = set(job.condition.flag_names())
        for s in job.steps:
            if s.when is not None:
                referenced |= s.when.flag_names()
        for name in sorted(referenced - rule_names):
            console.print_debug(f"job '{job.name}' references unknown category '{name}' (treated as false)")

    return validate_dag(wf.jobs)


# ----------------------------------------------------------------------
# Step execution
# ----------------------------------------------------------------------

def _tool_of(cmd: str) -> str:
    try:
        parts = shlex.split(cmd)
    except ValueError:
        parts = cmd.split()
    return Path(parts[0]).name if parts else ""


def _slug(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "-", name).strip("-") or "step"


def _step_env(job: Job, step: Step, env: ExecutionEnvironment) -> Dict[str, str]:
    merged = os.environ.copy()
    merged.update(env.extra_env)
    merged.update(env.ctx.as_env())
    merged["GUARDRAIL_JOB"] = job.name
    merged.update(job.env)
    merged.update(step.env)
    return merged


def _terminate(proc: subprocess.Popen) -> None:
    """Stop the step's whole process group: SIGTERM, then SIGKILL after a grace period."""
    try:
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGTERM)
        else:
            proc.terminate()
    except ProcessLookupError:
        return
    try:
        proc.wait(timeout=TERMINATE_GRACE)
    except subprocess.TimeoutExpired:
        try:
            if os.name == "posix":
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            pass
        proc.wait()


def run_step(job: Job, step: Step, env: ExecutionEnvironment) -> StepResult:
    """
    Run one step as one external process and classify what happened.

    Never raises for tool problems: crashes, timeouts and exit codes all come
    back as a StepResult whose `escalate` flag tells the job whether to stop.
    """
    cwd = (env.repo_root / (step.cwd or ".")).resolve()

    # `when`, optional inputs and optional capabilities turn the step into a no-op
    if step.when is not None and not step.when.evaluate(env.flags, env.ctx):
        return StepResult(step.name, StepOutcome.SKIPPED, message=f"condition false: {step.when.describe()}")
    missing_inputs = [f for f in step.requires_files if not (cwd / f).exists()]
    if missing_inputs:
        return StepResult(step.name, StepOutcome.SKIPPED, message=f"missing optional input: {', '.join(missing_inputs)}")
    missing_caps = sorted(set(step.permissions) - set(env.capabilities))
    if missing_caps:
        return StepResult(step.name, StepOutcome.SKIPPED, message=f"missing capabilities: {', '.join(missing_caps)}")

    def _result(outcome: StepOutcome, *, exit_code: Optional[int] = None, message: str = "", started: float) -> StepResult:
        if outcome in (StepOutcome.FAILED, StepOutcome.ERROR, StepOutcome.TIMEOUT):
            escalate = not step.continue_on_error
        elif outcome is StepOutcome.FINDINGS:
            escalate = job.fail_on_findings and not step.continue_on_error
        else:
            escalate = False
        return StepResult(
            step.name,
            outcome,
            exit_code=exit_code,
            escalate=escalate,
            duration=time.monotonic() - started,
            message=message,
        )

    started = time.monotonic()
    if not cwd.is_dir():
        return _result(StepOutcome.ERROR, message=f"working directory not found: {cwd}", started=started)

    # whatever the declared artifact path holds now predates this step
    if step.artifact:
        previous = cwd / step.artifact
        try:
            if previous.is_file():
                previous.unlink()
        except OSError as e:
            return _result(StepOutcome.ERROR, message=f"could not clear previous artifact {step.artifact}: {e}", started=started)

    log_file = None
    if env.log_dir is not None:
        log_path = Path(env.log_dir) / job.name / f"{_slug(step.name)}.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_file = log_path.open("ab")

    try:
        try:
            proc = subprocess.Popen(
                step.run,
                shell=True,
                cwd=str(cwd),
                env=_step_env(job, step, env),
                stdout=log_file,
                stderr=subprocess.STDOUT if log_file else None,
                start_new_session=(os.name == "posix"),
            )
        except OSError as e:
            return _result(StepOutcome.ERROR, message=f"could not start: {e}", started=started)

        deadline = None if step.timeout is None else started + step.timeout
        while True:
            wait_for = POLL_INTERVAL
            if deadline is not None:
                wait_for = max(0.0, min(wait_for, deadline - time.monotonic()))
            try:
                code = proc.wait(timeout=wait_for)
                break
            except subprocess.TimeoutExpired:
                pass
            if env.is_cancelled():
                _terminate(proc)
                return _result(StepOutcome.CANCELLED, message="run cancelled", started=started)
            if deadline is not None and time.monotonic() >= deadline:
                _terminate(proc)
                return _result(StepOutcome.TIMEOUT, message=f"exceeded timeout of {step.timeout:g}s", started=started)
    finally:
        if log_file is not None:
            log_file.close()

    if code < 0:
        return _result(StepOutcome.ERROR, exit_code=code, message=f"killed by signal {-code}", started=started)
    if code in _NOT_FOUND_CODES:
        tool = _tool_of(step.run)
        hint = TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")
        return _result(StepOutcome.ERROR, exit_code=code, message=f"command not runnable: {tool} ({hint})", started=started)

    if code == 0 or code in step.findings_exit_codes:
        outcome = StepOutcome.SUCCESS if code == 0 else StepOutcome.FINDINGS
        if step.artifact_required and step.artifact and not (cwd / step.artifact).is_file():
            return _result(
                StepOutcome.FAILED,
                exit_code=code,
                message=f"required artifact missing: {step.artifact}",
                started=started,
            )
        message = "" if code == 0 else "tool reported findings"
        return _result(outcome, exit_code=code, message=message, started=started)

    return _result(StepOutcome.FAILED, exit_code=code, message=f"exited with {code}", started=started)


# ----------------------------------------------------------------------
# Job execution
# ----------------------------------------------------------------------

def run_job(job: Job, env: ExecutionEnvironment, cache: Optional[ToolCache] = None) -> JobResult:
    """
    Run a job's steps strictly in order, folding step results into a job state.

    The first escalating step aborts the rest of the job.
    """
    console = get_console()
    console.print_job_start(job.name)

    missing = sorted(set(job.permissions) - set(env.capabilities))
    if missing:
        return JobResult(job.name, JobState.FAILURE, reason=f"missing capabilities: {', '.join(missing)}")

    if cache is not None and job.cache_dirs:
        hit = cache.restore(job, repo_root=env.repo_root)
        console.print_info(f"[{job.name}] cache: {hit.reason}")

    results: List[StepResult] = []
    state = JobState.SUCCESS
    reason = ""

    for step in job.steps:
        if env.is_cancelled():
            state, reason = JobState.CANCELLED, "run cancelled"
            break

        console.print_step(job.name, step.name)
        r = run_step(job, step, env)
        results.append(r)
        console.print_step_result(job.name, r)

        if r.outcome is StepOutcome.CANCELLED:
            state, reason = JobState.CANCELLED, "run cancelled"
            break
        if r.escalate:
            state, reason = JobState.FAILURE, f"step '{step.name}' {r.outcome.value}"
            break

    if state is JobState.SUCCESS and cache is not None and job.cache_dirs:
        try:
            key = cache.save(job, repo_root=env.repo_root)
            cache.prune(job.name, keep=job.cache_keep)
        except (OSError, tarfile.TarError) as e:
            # the job's outcome stands without a cache
            console.print_warning(f"[{job.name}] cache: could not save: {e}")
        else:
            console.print_info(f"[{job.name}] cache: saved ({key[:12]}...)")

    return JobResult(job.name, state, tuple(results), reason=reason)


def _gate(job: Job, results: Mapping[str, JobResult], should_run: bool, env: ExecutionEnvironment) -> Optional[JobResult]:
    """Return a terminal result for a job that must not run, else None."""
    if env.is_cancelled():
        return JobResult(job.name, JobState.CANCELLED, reason="run cancelled")
    if not job.always:
        for dep in job.needs:
            dep_state = results[dep].state
            if dep_state is not JobState.SUCCESS:
                return JobResult(job.name, JobState.SKIPPED, reason=f"dependency '{dep}' {dep_state.value}")
    if not should_run:
        return JobResult(job.name, JobState.SKIPPED, reason=f"condition false: {job.condition.describe()}")
    return None


def _execute(job: Job, env: ExecutionEnvironment, store: Optional[ArtifactStore], cache: Optional[ToolCache]) -> JobResult:
    result = run_job(job, env, cache)
    if store is not None and result.executed:
        result = replace(result, artifacts=collect(job, result, store, repo_root=env.repo_root))
    return result


# ----------------------------------------------------------------------
# Scheduling
# ----------------------------------------------------------------------

def plan(jobs: Sequence[Job], flags: CategoryFlags, ctx: TriggerContext) -> Dict[str, bool]:
    """Evaluate every job's condition once. Read-only for the rest of the run."""
    return {j.name: evaluate(j, flags, ctx) for j in jobs}


def run_dag(
    jobs: Iterable[Job],
    *,
    env: ExecutionEnvironment,
    store: Optional[ArtifactStore] = None,
    cache: Optional[ToolCache] = None,
    max_workers: int | None = None,
) -> Dict[str, JobResult]:
    """
    Run jobs on a bounded worker pool in dependency order.

    A job becomes ready once all of its dependencies have a terminal result;
    it is then either gated (skipped/cancelled) on the spot or submitted.
    Every job ends up with exactly one JobResult.
    """
    console = get_console()
    jobs = list(jobs)
    by_name = {j.name: j for j in jobs}

    adj, indeg = build_dag(jobs)
    topo_levels(adj, indeg)  # raises on cycles before anything runs
    decisions = plan(jobs, env.flags, env.ctx)

    if max_workers is None:
        c = os.cpu_count() or 2
        max_workers = max(1, c - 1)

    remaining = dict(indeg)
    ready: List[str] = sorted(n for n, d in remaining.items() if d == 0)
    results: Dict[str, JobResult] = {}
    in_flight: Dict = {}

    def finish(name: str, result: JobResult) -> None:
        results[name] = result
        for nxt in adj[name]:
            remaining[nxt] -= 1
            if remaining[nxt] == 0:
                ready.append(nxt)
        ready.sort()

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        while ready or in_flight:
            while ready:
                name = ready.pop(0)
                job = by_name[name]
                gated = _gate(job, results, decisions[name], env)
                if gated is not None:
                    console.print_job_skipped(name, gated.reason)
                    finish(name, gated)
                    continue
                fut = pool.submit(_execute, job, env, store, cache)
                in_flight[fut] = name

            if not in_flight:
                break

            done, _pending = wait(list(in_flight), return_when=FIRST_COMPLETED)
            for fut in sorted(done, key=lambda f: in_flight[f]):
                name = in_flight.pop(fut)
                try:
                    result = fut.result()
                except Exception as e:
                    # a bug in the engine, not a tool failure: keep the run going
                    console.print_exception(e)
                    result = JobResult(name, JobState.FAILURE, reason=f"internal error: {e}")
                console.print_job_finished(name, result.state.value, result.reason)
                finish(name, result)

    return results


def run_workflow(
    wf: Workflow,
    changeset: ChangeSet,
    *,
    ctx: TriggerContext,
    repo_root: str | Path = ".",
    store: Optional[ArtifactStore] = None,
    cache: Optional[ToolCache] = None,
    policy: Optional[VerdictPolicy] = None,
    max_workers: int | None = None,
    capabilities: Iterable[str] = (),
    extra_env: Optional[Mapping[str, str]] = None,
    log_dir: Optional[Path] = None,
    cancel: Optional[threading.Event] = None,
) -> RunReport:
    """Change detection -> conditions -> jobs -> artifacts -> aggregated report."""
    flags = detect(changeset, wf.rules)
    get_console().print_flags(flags)

    env = ExecutionEnvironment(
        repo_root=Path(repo_root).resolve(),
        ctx=ctx,
        flags=flags,
        capabilities=frozenset(capabilities),
        extra_env=dict(extra_env or {}),
        log_dir=log_dir,
        cancel=cancel or threading.Event(),
    )
    results = run_dag(wf.jobs, env=env, store=store, cache=cache, max_workers=max_workers)

    effective = policy or wf.policy or VerdictPolicy.OBSERVE_ONLY
    return aggregate(results, policy=effective, cancelled=env.is_cancelled())
