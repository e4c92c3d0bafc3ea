# guardrail_workflow.py
# Security scanning for this repository: SAST, secret scanning and dependency
# audit, gated on what changed. Weekly scheduled runs scan everything.
from __future__ import annotations

from guardrail import branch_is, category, event_is, flag, job, sh, wf
from guardrail.step_workflows.security import (
    bandit_step,
    gitleaks_step,
    pip_install_step,
    safety_step,
    semgrep_step,
)

python_changed = flag("python")
scheduled = event_is("schedule")


def workflow():
    return wf(
        job(
            "sast-scan",
            pip_install_step(packages=["bandit", "semgrep"]),
            bandit_step(),
            semgrep_step(),
            sh(
                "Publish SARIF to code scanning",
                "codeql github upload-results --sarif=semgrep-results.sarif",
                requires_files=("semgrep-results.sarif",),
                continue_on_error=True,
                when=branch_is("main"),
                permissions=["security-events:write"],
            ),
            when=python_changed | scheduled,
            cache_dirs=["~/.local/bin"],
            cache_key_files=["**/requirements.txt"],
        ),
        job(
            "secret-scan",
            gitleaks_step(),
            # skip doc-only changes
            when=~flag("docs") | python_changed | scheduled,
        ),
        job(
            "sca-scan",
            pip_install_step(packages=["safety"]),
            safety_step(),
            when=python_changed | scheduled,
            fail_on_findings=True,
        ),
        rules=[
            category("python", "**/*.py", "requirements.txt"),
            category("docs", "**/*.md", "LICENSE"),
        ],
        name="security-scan",
        policy="observe-only",
    )
