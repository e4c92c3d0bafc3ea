"""
Tests for the job dependency graph
"""

import pytest

from guardrail.dag import build_dag, topo_levels, validate_dag
from guardrail.dsl import job, sh
from guardrail.errors import ConfigError


def _job(name, *needs):
    return job(name, sh("noop", "true"), needs=list(needs))


class TestBuildDag:
    def test_edges_and_indegrees(self):
        adj, indeg = build_dag([_job("a"), _job("b", "a"), _job("c", "a", "b")])
        assert adj == {"a": {"b", "c"}, "b": {"c"}, "c": set()}
        assert indeg == {"a": 0, "b": 1, "c": 2}

    def test_duplicate_names_rejected(self):
        with pytest.raises(ConfigError):
            build_dag([_job("a"), _job("a")])

    def test_missing_dependency_rejected(self):
        with pytest.raises(ConfigError) as exc:
            build_dag([_job("a", "ghost")])
        assert exc.value.job == "a"

    def test_self_dependency_rejected(self):
        with pytest.raises(ConfigError):
            build_dag([_job("a", "a")])


class TestTopoLevels:
    def test_independent_jobs_share_a_stage(self):
        levels = validate_dag([_job("sast"), _job("secrets"), _job("sca"), _job("report", "sast", "secrets", "sca")])
        assert levels == [["sast", "sca", "secrets"], ["report"]]

    def test_cycle_rejected(self):
        adj, indeg = build_dag([_job("a", "c"), _job("b", "a"), _job("c", "b")])
        with pytest.raises(ConfigError) as exc:
            topo_levels(adj, indeg)
        assert exc.value.details["stuck"] == ["a", "b", "c"]

    def test_levels_do_not_mutate_indegrees(self):
        adj, indeg = build_dag([_job("a"), _job("b", "a")])
        topo_levels(adj, indeg)
        assert indeg == {"a": 0, "b": 1}
