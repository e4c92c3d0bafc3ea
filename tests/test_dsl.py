"""
Tests for the workflow DSL and workflow loading
"""

import pytest

from guardrail.conditions import ALWAYS, flag
from guardrail.dsl import build, category, job, matrix, sh, wf
from guardrail.errors import ConfigError
from guardrail.model import Job, VerdictPolicy
from guardrail.runner import load_workflow, validate_workflow
from guardrail.step_workflows.security import (
    bandit_step,
    gitleaks_step,
    pip_install_step,
    safety_step,
    semgrep_step,
)


class TestHelpers:
    """Tests for sh/job/wf."""

    def test_job_defaults(self):
        j = job("lint", sh("ruff", "ruff check ."))
        assert j.condition is ALWAYS
        assert j.needs == []
        assert not j.always
        assert not j.fail_on_findings

    def test_job_requires_steps(self):
        with pytest.raises(ValueError):
            job("empty")

    def test_job_cwd_applies_to_steps_without_one(self):
        j = job("sast", sh("a", "true"), sh("b", "true", cwd="other"), cwd="svc")
        assert [s.cwd for s in j.steps] == ["svc", "other"]

    def test_step_env_values_are_strings(self):
        assert sh("s", "true", env={"N": 3}).env == {"N": "3"}

    def test_wf_flattens_matrix_jobs(self):
        jobs = matrix("config", ["p/python", "p/secrets"]).jobs(
            lambda v: job(f"semgrep-{v.split('/')[-1]}", semgrep_step(config=v))
        )
        w = wf(job("first", sh("s", "true")), jobs, policy="strict")
        assert [j.name for j in w.jobs] == ["first", "semgrep-python", "semgrep-secrets"]
        assert w.policy is VerdictPolicy.STRICT

    def test_category(self):
        rule = category("python", "**/*.py", "requirements.txt")
        assert rule.patterns == ("**/*.py", "requirements.txt")


class TestJobBuilder:
    def test_fluent_build(self):
        j = (
            build("sast")
            .depends_on("setup")
            .when(flag("python"))
            .always_run()
            .require_permissions("security-events:write")
            .fail_on_findings()
            .with_env(LEVEL=2)
            .define_step("bandit", "bandit -r .", timeout=60, findings_exit_codes=(1,))
            .cache("~/.cache/pip", key_files=["requirements.txt"], keep=2)
            .build()
        )
        assert j.needs == ["setup"]
        assert j.condition == flag("python")
        assert j.always
        assert j.permissions == ["security-events:write"]
        assert j.fail_on_findings
        assert j.env == {"LEVEL": "2"}
        assert j.steps[0].timeout == 60
        assert j.steps[0].findings_exit_codes == (1,)
        assert j.cache_dirs == ["~/.cache/pip"]
        assert j.cache_keep == 2

    def test_builder_requires_steps(self):
        with pytest.raises(ValueError):
            build("empty").build()


class TestSecuritySteps:
    """Tests for the scanner step factories."""

    def test_bandit(self):
        s = bandit_step()
        assert s.findings_exit_codes == (1,)
        assert s.artifact == "bandit-results.json"
        assert "-f json" in s.run

    def test_semgrep_is_informational_by_default(self):
        s = semgrep_step(config="p/secrets")
        assert s.continue_on_error
        assert "--config p/secrets" in s.run
        assert s.artifact == "semgrep-results.sarif"

    def test_gitleaks(self):
        s = gitleaks_step()
        assert s.findings_exit_codes == (1,)
        assert "--report-path gitleaks-report.json" in s.run

    def test_safety_needs_its_manifest(self):
        s = safety_step(requirements="requirements/prod.txt")
        assert s.requires_files == ("requirements/prod.txt",)
        assert s.findings_exit_codes == (64,)

    def test_pip_install(self):
        s = pip_install_step(packages=["bandit", "semgrep"], requirements=None)
        assert s.run.endswith("pip install bandit semgrep")


class TestLoadWorkflow:
    """Tests for loading workflow files."""

    def test_workflow_function(self, write_workflow):
        path = write_workflow(
            """
            from guardrail import category, flag, job, sh, wf

            def workflow():
                return wf(
                    job("sast", sh("scan", "true"), when=flag("python")),
                    rules=[category("python", "**/*.py")],
                    name="security",
                )
            """
        )
        w = load_workflow(path)
        assert w.name == "security"
        assert [j.name for j in w.jobs] == ["sast"]
        assert [r.name for r in w.rules] == ["python"]

    def test_jobs_global(self, write_workflow):
        path = write_workflow(
            """
            from guardrail import category, job, sh

            RULES = [category("docs", "**/*.md")]
            POLICY = "strict"
            JOBS = [job("a", sh("s", "true")), job("b", sh("s", "true"), needs=["a"])]
            """,
            name="jobs_workflow.py",
        )
        w = load_workflow(path)
        assert w.name == "jobs_workflow"
        assert w.policy is VerdictPolicy.STRICT
        assert [r.name for r in w.rules] == ["docs"]

    def test_workflow_function_returning_list(self, write_workflow):
        path = write_workflow(
            """
            from guardrail import job, sh

            def workflow():
                return [job("a", sh("s", "true"))]
            """
        )
        assert load_workflow(path).policy is None

    def test_nothing_defined(self, write_workflow):
        with pytest.raises(ConfigError):
            load_workflow(write_workflow("X = 1\n"))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_workflow(tmp_path / "nope.py")

    def test_not_a_python_file(self, tmp_path):
        path = tmp_path / "workflow.yml"
        path.write_text("jobs: []\n")
        with pytest.raises(ConfigError):
            load_workflow(path)

    def test_invalid_glob_fails_at_load(self, write_workflow):
        path = write_workflow(
            """
            from guardrail import category, job, sh, wf

            def workflow():
                return wf(job("a", sh("s", "true")), rules=[category("python", "[oops")])
            """
        )
        with pytest.raises(ConfigError):
            load_workflow(path)

    def test_cycle_fails_at_load(self, write_workflow):
        path = write_workflow(
            """
            from guardrail import job, sh

            JOBS = [job("a", sh("s", "true"), needs=["b"]), job("b", sh("s", "true"), needs=["a"])]
            """
        )
        with pytest.raises(ConfigError):
            load_workflow(path)


class TestValidateWorkflow:
    def test_job_without_steps(self):
        with pytest.raises(ConfigError):
            validate_workflow(wf(Job(name="empty", steps=[])))

    def test_duplicate_step_names(self):
        with pytest.raises(ConfigError):
            validate_workflow(wf(job("a", sh("s", "true"), sh("s", "false"))))

    def test_duplicate_artifact_names(self):
        j = job("a", sh("one", "true", artifact="x/out.json"), sh("two", "true", artifact="y/out.json"))
        with pytest.raises(ConfigError):
            validate_workflow(wf(j))

    def test_slash_in_job_name(self):
        with pytest.raises(ConfigError):
            validate_workflow(wf(job("sast/bandit", sh("s", "true"))))

    def test_duplicate_rules(self):
        with pytest.raises(ConfigError):
            validate_workflow(wf(job("a", sh("s", "true")), rules=[category("py", "*.py"), category("py", "*.pyi")]))

    def test_unknown_category_is_allowed(self):
        stages = validate_workflow(wf(job("a", sh("s", "true"), when=flag("rust"))))
        assert stages == [["a"]]
