"""
Tests for status aggregation and report sinks
"""

import json

import pytest

from guardrail.errors import ReportPublishError
from guardrail.model import JobResult, JobState, StepOutcome, StepResult, Verdict, VerdictPolicy
from guardrail.report import ConsoleReportSink, HttpReportSink, JsonReportSink, aggregate
from guardrail.ui.console import Console


def _results(**states):
    return {name: JobResult(name, state) for name, state in states.items()}


class TestAggregate:
    """Tests for aggregate()."""

    def test_observe_only_never_fails(self):
        report = aggregate(_results(sast=JobState.FAILURE, secrets=JobState.FAILURE, sca=JobState.SUCCESS))
        assert report.policy is VerdictPolicy.OBSERVE_ONLY
        assert report.overall is Verdict.COMPLETED
        assert report.any_failed
        assert report.failed_jobs() == ["sast", "secrets"]

    def test_observe_only_completed_when_clean(self):
        report = aggregate(_results(sast=JobState.SUCCESS))
        assert report.overall is Verdict.COMPLETED
        assert not report.any_failed

    def test_strict_fails_on_any_failure(self):
        report = aggregate(_results(sast=JobState.SUCCESS, sca=JobState.FAILURE), VerdictPolicy.STRICT)
        assert report.overall is Verdict.FAILURE

    def test_skipped_and_cancelled_do_not_fail(self):
        results = _results(sast=JobState.SKIPPED, secrets=JobState.CANCELLED, sca=JobState.SUCCESS)
        report = aggregate(results, VerdictPolicy.STRICT, cancelled=True)
        assert report.overall is Verdict.SUCCESS
        assert not report.any_failed
        assert report.cancelled

    def test_every_job_is_reported_in_name_order(self):
        report = aggregate(_results(zeta=JobState.SUCCESS, alpha=JobState.SKIPPED))
        assert list(report.results) == ["alpha", "zeta"]

    def test_results_are_read_only(self):
        report = aggregate(_results(sast=JobState.SUCCESS))
        with pytest.raises(TypeError):
            report.results["sast"] = JobResult("sast", JobState.FAILURE)

    def test_reaggregation_is_byte_identical(self):
        results = {
            "sast": JobResult(
                "sast",
                JobState.FAILURE,
                (StepResult("bandit", StepOutcome.FAILED, exit_code=2, escalate=True, duration=1.5),),
                reason="step 'bandit' failed",
            ),
            "secrets": JobResult("secrets", JobState.SKIPPED, reason="condition false: python"),
            "sca": JobResult("sca", JobState.SUCCESS, (StepResult("safety", StepOutcome.SKIPPED),)),
            "report": JobResult("report", JobState.CANCELLED, reason="run cancelled"),
        }
        for policy in VerdictPolicy:
            first = aggregate(results, policy).to_json()
            assert aggregate(results, policy).to_json() == first
            assert aggregate(dict(reversed(list(results.items()))), policy).to_json() == first

    def test_empty_run(self):
        assert aggregate({}, VerdictPolicy.STRICT).overall is Verdict.SUCCESS


class TestPolicyParse:
    @pytest.mark.parametrize("raw", ["observe-only", "observe_only", "observe", "OBSERVE-ONLY"])
    def test_observe_only_spellings(self, raw):
        assert VerdictPolicy.parse(raw) is VerdictPolicy.OBSERVE_ONLY

    def test_unknown_policy_rejected(self):
        from guardrail.errors import ConfigError

        with pytest.raises(ConfigError):
            VerdictPolicy.parse("lenient")


class TestSinks:
    """Tests for report sinks."""

    def _report(self):
        results = {
            "sast": JobResult(
                "sast",
                JobState.FAILURE,
                (StepResult("bandit", StepOutcome.FAILED, exit_code=2, escalate=True),),
                reason="step 'bandit' failed",
            ),
        }
        return aggregate(results, VerdictPolicy.STRICT)

    def test_json_sink(self, tmp_path):
        path = tmp_path / "out" / "report.json"
        JsonReportSink(path).publish(self._report())
        data = json.loads(path.read_text())
        assert data["overall"] == "failure"
        assert data["policy"] == "strict"
        assert data["jobs"]["sast"]["steps"][0]["exit_code"] == 2

    def test_console_sink(self, capsys):
        ConsoleReportSink(Console()).publish(self._report())
        out = capsys.readouterr().out
        assert "SECURITY REPORT" in out
        assert "sast: FAILURE (step 'bandit' failed)" in out
        assert "Overall: FAILURE" in out

    def test_http_sink_unreachable(self):
        sink = HttpReportSink("http://127.0.0.1:9/report", timeout=2)
        with pytest.raises(ReportPublishError) as exc:
            sink.publish(self._report())
        assert exc.value.kind == "report"
