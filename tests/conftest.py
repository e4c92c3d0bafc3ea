"""
Pytest Configuration and Fixtures

Shared fixtures for guardrail tests.
"""

import textwrap
from pathlib import Path
from typing import Callable

import pytest

from guardrail.artifacts import LocalArtifactStore
from guardrail.context import CategoryFlags, TriggerContext, TriggerEvent
from guardrail.runner import ExecutionEnvironment
from guardrail.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def fresh_console():
    """Each test gets its own non-debug console."""
    console = Console()
    set_console(console)
    return console


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """An empty directory used as the repository root."""
    root = tmp_path / "repo"
    root.mkdir()
    return root


@pytest.fixture
def push_ctx() -> TriggerContext:
    return TriggerContext(event=TriggerEvent.PUSH, branch="feature/x")


@pytest.fixture
def make_env(repo: Path, push_ctx: TriggerContext) -> Callable[..., ExecutionEnvironment]:
    """Build an ExecutionEnvironment rooted at `repo`."""

    def _make(**overrides) -> ExecutionEnvironment:
        values = {
            "repo_root": repo,
            "ctx": push_ctx,
            "flags": CategoryFlags(),
        }
        values.update(overrides)
        return ExecutionEnvironment(**values)

    return _make


@pytest.fixture
def store(tmp_path: Path) -> LocalArtifactStore:
    return LocalArtifactStore(tmp_path / "artifacts", run_id="test-run")


@pytest.fixture
def write_workflow(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a workflow file and return its path."""

    def _write(source: str, name: str = "test_workflow.py") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return path

    return _write
