# cli.py
from __future__ import annotations

import signal
import subprocess
import sys
import threading
from pathlib import Path

import click

from guardrail.artifacts import LocalArtifactStore
from guardrail.cache import ToolCache
from guardrail.changes import detect
from guardrail.conditions import evaluate
from guardrail.config import DEFAULT_WORKFLOW, Settings, changeset_from_env, parse_capabilities, trigger_context_from_env
from guardrail.dag import validate_dag
from guardrail.errors import CIError, ConfigError
from guardrail.git_facts.git import get_remote_url
from guardrail.model import Verdict, VerdictPolicy
from guardrail.report import ConsoleReportSink, HttpReportSink, JsonReportSink
from guardrail.runner import load_workflow, run_workflow
from guardrail.ui.console import Console, get_console, set_console

EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_CANCELLED = 130


def find_workflow_files() -> list[Path]:
    """guardrail_workflow.py first, then any other *_workflow.py in the cwd."""
    current_dir = Path(".")
    default_workflow = current_dir / DEFAULT_WORKFLOW
    files = [default_workflow] if default_workflow.exists() else []
    for path in sorted(current_dir.glob("*_workflow.py")):
        if path != default_workflow:
            files.append(path)
    return files


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Resolve the workflow file from --workflow or by discovery.

    Exits with a config error when nothing (or more than one candidate) is found.
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  guardrail run --workflow security_workflow.py",
            )
            sys.exit(EXIT_CONFIG)
        return workflow_path

    workflow_files = find_workflow_files()
    if not workflow_files:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", f"  {DEFAULT_WORKFLOW}", "  *_workflow.py"],
            suggestion=f"Create {DEFAULT_WORKFLOW} or pass --workflow.",
        )
        sys.exit(EXIT_CONFIG)
    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[f"  {f}" for f in workflow_files],
            suggestion="guardrail run --workflow <file>",
        )
        sys.exit(EXIT_CONFIG)
    return workflow_files[0]


def _repo_name() -> str:
    try:
        return get_remote_url("origin").rstrip("/").split("/")[-1].replace(".git", "")
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path(".").resolve().name


def _install_cancel_handlers(cancel: threading.Event) -> dict:
    """SIGINT/SIGTERM request cancellation instead of killing the engine outright."""
    console = get_console()

    def handler(signum, frame):
        if not cancel.is_set():
            console.print_info(f"\nReceived signal {signum}, cancelling run...")
        cancel.set()

    previous = {}
    if threading.current_thread() is threading.main_thread():
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, handler)
    return previous


def _restore_handlers(previous: dict) -> None:
    for sig, h in previous.items():
        signal.signal(sig, h)


def _fail(exc: Exception, ctx: click.Context) -> None:
    console = get_console()
    if isinstance(exc, ConfigError):
        console.print_error("Invalid configuration", exc.message, details=[f"{k}: {v}" for k, v in exc.details.items()])
        sys.exit(EXIT_CONFIG)
    console.print_exception(exc)
    sys.exit(EXIT_FAILED)


@click.group()
@click.option("--debug", is_flag=True, default=False, help="Show debug output and stack traces")
@click.pass_context
def cli(ctx, debug):
    """guardrail: change-aware security scan orchestration."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


_trigger_options = [
    click.option("--workflow", default=None, help=f"Workflow file (defaults to {DEFAULT_WORKFLOW} if present)"),
    click.option(
        "--event",
        default=None,
        help="Trigger event: push, pull_request, schedule, manual [env: GUARDRAIL_EVENT]",
    ),
    click.option("--branch", default=None, help="Target branch [env: GUARDRAIL_BRANCH]"),
    click.option(
        "--changed-files",
        default=None,
        help="Comma/newline separated changed paths; default is a git diff [env: GUARDRAIL_CHANGED_FILES]",
    ),
    click.option("--compare-ref", default=None, help="Git ref to diff against [env: GUARDRAIL_COMPARE_REF]"),
]


def trigger_options(fn):
    for opt in reversed(_trigger_options):
        fn = opt(fn)
    return fn


@cli.command()
@trigger_options
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Parallel jobs [env: GUARDRAIL_WORKERS]")
@click.option(
    "--policy",
    default=None,
    type=click.Choice([p.value for p in VerdictPolicy]),
    help="Overall verdict policy [env: GUARDRAIL_POLICY]",
)
@click.option("--artifact-dir", default=None, help="Artifact store root [env: GUARDRAIL_ARTIFACT_DIR]")
@click.option("--cache-dir", default=None, help="Tool cache root [env: GUARDRAIL_CACHE_DIR]")
@click.option("--cache/--no-cache", "use_cache", default=True, show_default=True, help="Restore/save job tool caches")
@click.option("--log-dir", default=None, help="Write step output to per-step log files [env: GUARDRAIL_LOG_DIR]")
@click.option(
    "--capability",
    "capabilities",
    multiple=True,
    help="Grant a capability jobs may require, e.g. security-events:write [env: GUARDRAIL_CAPABILITIES]",
)
@click.option("--run-id", default=None, help="Artifact namespace for this run (default: random)")
@click.option("--report-json", default=None, type=click.Path(dir_okay=False), help="Also write the report as JSON")
@click.option("--report-url", default=None, help="Also POST the report as JSON to this URL")
@click.pass_context
def run(
    ctx,
    workflow,
    event,
    branch,
    changed_files,
    compare_ref,
    workers,
    policy,
    artifact_dir,
    cache_dir,
    use_cache,
    log_dir,
    capabilities,
    run_id,
    report_json,
    report_url,
):
    """Run a workflow's security jobs."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        settings = Settings.from_env()
        wf = load_workflow(workflow_path)
        trigger = trigger_context_from_env(event=event, branch=branch)
        changeset = changeset_from_env(changed_files=changed_files, compare_ref=compare_ref or settings.compare_ref)
    except Exception as e:
        _fail(e, ctx)
        return

    store = LocalArtifactStore(artifact_dir or settings.artifact_dir, run_id=run_id)
    cache = ToolCache(cache_dir or settings.cache_dir) if use_cache else None
    granted = settings.capabilities | parse_capabilities(",".join(capabilities))
    effective_policy = VerdictPolicy.parse(policy) if policy else settings.policy

    console.print_run_started(
        repository=_repo_name(),
        workflow=workflow_path.name,
        job_count=len(wf.jobs),
        event=trigger.event.value,
        branch=trigger.branch,
        run_id=store.run_id,
    )
    console.print_debug(f"changed files: {list(changeset.paths)}")
    console.print_debug(f"artifacts: {store.root}")

    cancel = threading.Event()
    previous = _install_cancel_handlers(cancel)
    try:
        report = run_workflow(
            wf,
            changeset,
            ctx=trigger,
            repo_root=".",
            store=store,
            cache=cache,
            policy=effective_policy,
            max_workers=workers or settings.workers,
            capabilities=granted,
            log_dir=Path(log_dir) if log_dir else settings.log_dir,
            cancel=cancel,
        )
    except Exception as e:
        _fail(e, ctx)
        return
    finally:
        _restore_handlers(previous)

    sinks = [ConsoleReportSink(console)]
    if report_json:
        sinks.append(JsonReportSink(report_json))
    if report_url:
        sinks.append(HttpReportSink(report_url))

    for sink in sinks:
        try:
            sink.publish(report)
        except CIError as e:
            # the verdict stands even if a sink is down
            console.print_error("Could not publish report", str(e))

    if report.cancelled:
        sys.exit(EXIT_CANCELLED)
    if report.overall is Verdict.FAILURE:
        sys.exit(EXIT_FAILED)


@cli.command()
@trigger_options
@click.pass_context
def plan(ctx, workflow, event, branch, changed_files, compare_ref):
    """Show change categories and which jobs would run, without running anything."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        settings = Settings.from_env()
        wf = load_workflow(workflow_path)
        trigger = trigger_context_from_env(event=event, branch=branch)
        changeset = changeset_from_env(changed_files=changed_files, compare_ref=compare_ref or settings.compare_ref)
    except Exception as e:
        _fail(e, ctx)
        return

    flags = detect(changeset, wf.rules)
    console.print_info(f"Trigger: {trigger.event.value} ({trigger.branch or 'unknown branch'})")
    console.print_info(f"Changed files: {len(changeset)}")
    console.print_flags(flags)

    by_name = {j.name: j for j in wf.jobs}
    for idx, stage in enumerate(validate_dag(wf.jobs), start=1):
        console.print_info(f"Stage {idx}:")
        for name in stage:
            job = by_name[name]
            if evaluate(job, flags, trigger):
                extra = ", always" if job.always else ""
                console.print_plan_job(name, f"{job.condition.describe()}{extra}")
            else:
                console.print_plan_job_skipped(name, f"condition false: {job.condition.describe()}")


@cli.command()
@click.argument("run_id")
@click.option("--artifact-dir", default=None, help="Artifact store root [env: GUARDRAIL_ARTIFACT_DIR]")
def artifacts(run_id, artifact_dir):
    """List artifacts stored for RUN_ID."""
    console = get_console()
    store = LocalArtifactStore(artifact_dir or Settings.from_env().artifact_dir, run_id=run_id)
    refs = store.list()
    if not refs:
        console.print_info(f"No artifacts for run {run_id} under {store.root}")
        return
    for ref in refs:
        console.print_info(f"{ref.key}  {ref.size} bytes  sha256:{ref.sha256[:12]}  {ref.path}")


if __name__ == "__main__":
    cli()
