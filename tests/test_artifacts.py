"""
Tests for the artifact store and result collector
"""

import hashlib

import pytest

from guardrail.artifacts import LocalArtifactStore, artifact_key, collect
from guardrail.dsl import job, sh
from guardrail.errors import ArtifactExistsError
from guardrail.model import ArtifactRef, JobResult, JobState, StepOutcome, StepResult


class TestLocalArtifactStore:
    """Tests for LocalArtifactStore."""

    def test_put_and_get_bytes(self, store):
        ref = store.put("sast/bandit.json", b'{"results": []}')
        assert ref.key == "sast/bandit.json"
        assert ref.size == len(b'{"results": []}')
        assert ref.sha256 == hashlib.sha256(b'{"results": []}').hexdigest()
        assert store.get(ref).read_bytes() == b'{"results": []}'

    def test_put_file(self, store, tmp_path):
        src = tmp_path / "report.sarif"
        src.write_text("sarif")
        ref = store.put("sast/report.sarif", src)
        assert store.get(ref).read_text() == "sarif"
        assert ref.sha256 == hashlib.sha256(b"sarif").hexdigest()

    def test_keys_are_write_once(self, store):
        store.put("sast/out.json", b"first")
        with pytest.raises(ArtifactExistsError):
            store.put("sast/out.json", b"second")
        assert (store.root / "sast" / "out.json").read_bytes() == b"first"

    @pytest.mark.parametrize("key", ["out.json", "a/b/c.json", "../out.json", "sast/.."])
    def test_malformed_keys_rejected(self, store, key):
        with pytest.raises(ValueError):
            store.put(key, b"x")

    def test_get_missing_raises(self, store):
        ref = ArtifactRef(key="sast/missing.json", path="", sha256="", size=0)
        with pytest.raises(FileNotFoundError):
            store.get(ref)

    def test_list_reads_metadata(self, store):
        assert store.list() == []
        store.put("secrets/gitleaks.json", b"[]")
        store.put("sast/bandit.json", b"{}")
        assert [r.key for r in store.list()] == ["sast/bandit.json", "secrets/gitleaks.json"]

    def test_runs_are_isolated(self, tmp_path):
        first = LocalArtifactStore(tmp_path, run_id="one")
        second = LocalArtifactStore(tmp_path, run_id="two")
        first.put("sast/out.json", b"1")
        second.put("sast/out.json", b"2")
        assert [r.key for r in second.list()] == ["sast/out.json"]

    def test_random_run_id(self, tmp_path):
        assert LocalArtifactStore(tmp_path).run_id != LocalArtifactStore(tmp_path).run_id


class TestCollect:
    """Tests for collect()."""

    def test_collects_from_executed_steps(self, store, repo):
        (repo / "bandit-results.json").write_text("{}")
        j = job("sast", sh("bandit", "bandit", artifact="bandit-results.json"))
        result = JobResult("sast", JobState.FAILURE, (StepResult("bandit", StepOutcome.FAILED, exit_code=2),))
        refs = collect(j, result, store, repo_root=repo)
        assert [r.key for r in refs] == ["sast/bandit-results.json"]

    def test_skipped_and_cancelled_steps_not_collected(self, store, repo):
        (repo / "a.json").write_text("{}")
        (repo / "b.json").write_text("{}")
        j = job("sast", sh("a", "true", artifact="a.json"), sh("b", "true", artifact="b.json"))
        result = JobResult(
            "sast",
            JobState.CANCELLED,
            (StepResult("a", StepOutcome.SKIPPED), StepResult("b", StepOutcome.CANCELLED)),
        )
        assert collect(j, result, store, repo_root=repo) == ()

    def test_steps_that_never_ran_not_collected(self, store, repo):
        (repo / "late.json").write_text("{}")
        j = job("sast", sh("first", "exit 1"), sh("late", "true", artifact="late.json"))
        result = JobResult("sast", JobState.FAILURE, (StepResult("first", StepOutcome.FAILED, exit_code=1),))
        assert collect(j, result, store, repo_root=repo) == ()

    def test_missing_file_is_a_warning(self, store, repo, capsys):
        j = job("sast", sh("bandit", "true", artifact="nope.json"))
        result = JobResult("sast", JobState.SUCCESS, (StepResult("bandit", StepOutcome.SUCCESS, exit_code=0),))
        assert collect(j, result, store, repo_root=repo) == ()
        assert "artifact 'nope.json' from step 'bandit' not found" in capsys.readouterr().err

    def test_artifact_name_and_cwd(self, store, repo):
        (repo / "svc").mkdir()
        (repo / "svc" / "out.json").write_text("{}")
        j = job("sast", sh("scan", "true", cwd="svc", artifact="out.json", artifact_name="svc-bandit.json"))
        result = JobResult("sast", JobState.SUCCESS, (StepResult("scan", StepOutcome.SUCCESS, exit_code=0),))
        refs = collect(j, result, store, repo_root=repo)
        assert [r.key for r in refs] == [artifact_key("sast", "svc-bandit.json")]
