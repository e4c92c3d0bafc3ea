"""Console output for guardrail: progress, warnings and the final summary."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from guardrail.model import RunReport, StepResult


class Console:
    """Centralized console output. Safe to call from worker threads."""

    def __init__(self, debug: bool = False):
        """
        Args:
            debug: If True, show debug messages and full tracebacks
        """
        self.debug = debug
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)
            stream.flush()

    def print_run_started(
        self, repository: str, workflow: str, job_count: int, event: str, branch: str, run_id: str
    ) -> None:
        self._out(
            "",
            "RUN STARTED",
            f"Repository: {repository}",
            f"Workflow: {workflow}",
            f"Trigger: {event} ({branch or 'unknown branch'})",
            f"Jobs: {job_count}",
            f"Run ID: {run_id}",
            "",
        )

    def print_flags(self, flags) -> None:
        """Print detected change categories."""
        if not flags:
            self._out("Changes: no categories defined")
            return
        shown = ", ".join(f"{k}={'yes' if v else 'no'}" for k, v in flags.items())
        self._out(f"Changes: {shown}")

    def print_plan_job(self, name: str, reason: str) -> None:
        self._out(f"  {name} ({reason})")

    def print_plan_job_skipped(self, name: str, reason: str) -> None:
        self._out(f"  {name} (skipped: {reason})")

    def print_job_start(self, name: str) -> None:
        self._out(f"JOB STARTED: {name}")

    def print_job_skipped(self, name: str, reason: str) -> None:
        self._out(f"JOB SKIPPED: {name} ({reason})")

    def print_job_finished(self, name: str, state: str, reason: str = "") -> None:
        suffix = f" ({reason})" if reason else ""
        self._out(f"JOB FINISHED: {name} -> {state}{suffix}")

    def print_step(self, job: str, name: str) -> None:
        self._out(f"[{job}] STEP: {name}")

    def print_step_result(self, job: str, result: "StepResult") -> None:
        """Print a step's outcome when it is anything other than a plain success."""
        if result.outcome.value == "success":
            return
        lines = [f"[{job}] STEP {result.outcome.value.upper()}: {result.name}"]
        if result.exit_code is not None:
            lines.append(f"[{job}]   exit code: {result.exit_code}")
        if result.message:
            lines.append(f"[{job}]   {result.message}")
        if result.escalate:
            lines.append(f"[{job}]   aborting remaining steps")
        self._out(*lines)

    def print_warning(self, message: str) -> None:
        self._out(f"WARNING: {message}", err=True)

    def print_results(self, report: "RunReport") -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "SECURITY REPORT", "=" * 40]
        for name, result in report.results.items():
            reason = f" ({result.reason})" if result.reason else ""
            lines.append(f"  {name}: {result.state.value.upper()}{reason}")
            for ref in result.artifacts:
                lines.append(f"      artifact: {ref.key}")
        lines.append("-" * 40)
        if report.any_failed:
            lines.append(f"One or more jobs failed: {', '.join(report.failed_jobs())}")
        else:
            lines.append("All jobs passed or were skipped.")
        if report.cancelled:
            lines.append("Run was cancelled.")
        lines.append(f"Policy: {report.policy.value}")
        lines.append(f"Overall: {report.overall.value.upper()}")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        lines = ["", f"ERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.extend(["", suggestion])
        self._out(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback

            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        self._out(message)

    def print_debug(self, message: str) -> None:
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (replaced by the CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    global _console
    _console = console
