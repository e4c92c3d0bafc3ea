# report.py
from __future__ import annotations

import urllib.error
import urllib.request
from pathlib import Path
from typing import Dict, Mapping, Optional

from .errors import ReportPublishError
from .model import JobResult, JobState, RunReport, Verdict, VerdictPolicy
from .ui.console import Console, get_console


def aggregate(
    results: Mapping[str, JobResult],
    policy: VerdictPolicy = VerdictPolicy.OBSERVE_ONLY,
    *,
    cancelled: bool = False,
) -> RunReport:
    """
    Fold job results into one report.

    Only jobs that actually failed count; skipped and cancelled jobs never do.
    Under observe-only the overall verdict is "completed" even with failures,
    so scans can be monitored without blocking delivery.
    """
    any_failed = any(r.state is JobState.FAILURE for r in results.values())

    if policy is VerdictPolicy.STRICT:
        overall = Verdict.FAILURE if any_failed else Verdict.SUCCESS
    else:
        overall = Verdict.COMPLETED

    return RunReport(
        results=dict(results),
        policy=policy,
        overall=overall,
        any_failed=any_failed,
        cancelled=cancelled,
    )


# ----------------------------------------------------------------------
# Report sinks
# ----------------------------------------------------------------------

class ReportSink:
    def publish(self, report: RunReport) -> None:
        raise NotImplementedError


class ConsoleReportSink(ReportSink):
    def __init__(self, console: Optional[Console] = None):
        self.console = console

    def publish(self, report: RunReport) -> None:
        (self.console or get_console()).print_results(report)


class JsonReportSink(ReportSink):
    def __init__(self, path: str | Path):
        self.path = Path(path)

    def publish(self, report: RunReport) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(report.to_json() + "\n", encoding="utf-8")


class HttpReportSink(ReportSink):
    """POST the report as JSON to a dashboard/collector endpoint."""

    def __init__(self, url: str, *, headers: Optional[Dict[str, str]] = None, timeout: float = 30.0):
        self.url = url
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self.timeout = timeout

    def publish(self, report: RunReport) -> None:
        data = report.to_json().encode("utf-8")
        req = urllib.request.Request(self.url, data=data, headers=self.headers, method="POST")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                response.read()
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace") if e.fp else ""
            raise ReportPublishError(
                f"HTTP {e.code} {e.reason}",
                details={"url": self.url, "body": body[:500]},
            ) from e
        except urllib.error.URLError as e:
            raise ReportPublishError(
                f"Could not connect to {self.url}",
                details={"reason": str(e.reason)},
            ) from e

