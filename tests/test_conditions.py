"""
Tests for condition expressions
"""

import pytest

from guardrail.conditions import ALWAYS, NEVER, Equals, all_of, any_of, branch_is, evaluate, event_is, flag, not_
from guardrail.context import CategoryFlags, TriggerContext, TriggerEvent
from guardrail.dsl import job, sh
from guardrail.errors import ConfigError

PUSH = TriggerContext(TriggerEvent.PUSH, "feature")
SCHEDULE = TriggerContext(TriggerEvent.SCHEDULE, "main")


class TestExpressions:
    """Tests for individual expression nodes."""

    def test_flag_or_schedule_runs_on_schedule(self):
        cond = flag("python") | event_is("schedule")
        assert cond.evaluate(CategoryFlags({"python": False}), SCHEDULE)

    def test_flag_or_schedule_skips_quiet_push(self):
        cond = flag("python") | event_is("schedule")
        assert not cond.evaluate(CategoryFlags({"python": False}), PUSH)

    def test_absent_category_is_false(self):
        assert not flag("rust").evaluate(CategoryFlags({"python": True}), PUSH)
        assert (~flag("rust")).evaluate(CategoryFlags(), PUSH)

    def test_doc_only_changes_skip(self):
        # "not docs or python or schedule"
        cond = ~flag("docs") | flag("python") | event_is("schedule")
        assert not cond.evaluate(CategoryFlags({"docs": True, "python": False}), PUSH)
        assert cond.evaluate(CategoryFlags({"docs": True, "python": True}), PUSH)
        assert cond.evaluate(CategoryFlags({"docs": False, "python": False}), PUSH)

    def test_and_requires_all_terms(self):
        cond = flag("python") & branch_is("main")
        flags = CategoryFlags({"python": True})
        assert cond.evaluate(flags, SCHEDULE)
        assert not cond.evaluate(flags, PUSH)

    def test_constants(self):
        assert ALWAYS.evaluate(CategoryFlags(), PUSH)
        assert not NEVER.evaluate(CategoryFlags(), PUSH)
        assert all_of().evaluate(CategoryFlags(), PUSH)
        assert not any_of().evaluate(CategoryFlags(), PUSH)

    def test_builders_match_operators(self):
        assert all_of(flag("a"), flag("b")) == flag("a") & flag("b")
        assert any_of(flag("a"), flag("b")) == flag("a") | flag("b")
        assert not_(flag("a")) == ~flag("a")

    def test_event_aliases_normalised(self):
        assert event_is("scheduled") == event_is("schedule")
        assert event_is("workflow_dispatch") == event_is(TriggerEvent.MANUAL)

    def test_unknown_context_field_rejected(self):
        with pytest.raises(ConfigError):
            Equals("actor", "octocat")

    def test_unknown_event_rejected(self):
        with pytest.raises(ConfigError):
            event_is("deploy")

    def test_non_expression_operand_rejected(self):
        with pytest.raises(ConfigError):
            flag("a") | "python"

    def test_describe(self):
        cond = flag("python") | event_is("schedule")
        assert cond.describe() == "(python or event == schedule)"
        assert str(~flag("docs")) == "not docs"

    def test_flag_names(self):
        cond = (flag("python") & ~flag("docs")) | event_is("push")
        assert cond.flag_names() == {"python", "docs"}


class TestEvaluate:
    """Tests for evaluate(job, flags, ctx)."""

    def test_default_condition_always_runs(self):
        j = job("lint", sh("noop", "true"))
        assert evaluate(j, CategoryFlags(), PUSH)

    def test_job_condition_is_used(self):
        j = job("sast", sh("noop", "true"), when=flag("python"))
        assert evaluate(j, CategoryFlags({"python": True}), PUSH)
        assert not evaluate(j, CategoryFlags({"python": False}), PUSH)

    def test_evaluation_is_repeatable(self):
        j = job("sast", sh("noop", "true"), when=flag("python") | event_is("schedule"))
        flags = CategoryFlags({"python": False})
        assert [evaluate(j, flags, SCHEDULE) for _ in range(3)] == [True, True, True]
