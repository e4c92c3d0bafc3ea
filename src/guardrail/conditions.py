# conditions.py
# Job/step gating expressions.
#
# A condition is a tiny expression tree over category flags and the trigger
# context:
#
#   flag("python") | event_is("schedule")
#   ~flag("docs") | flag("python")
#
# Evaluation is pure: no side effects, unknown flags are false.
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, FrozenSet, Tuple

from .context import CategoryFlags, TriggerContext, TriggerEvent
from .errors import ConfigError

if TYPE_CHECKING:
    from .model import Job

CONTEXT_FIELDS = ("event", "branch")


class Expr:
    """Base class for condition nodes."""

    def evaluate(self, flags: CategoryFlags, ctx: TriggerContext) -> bool:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError

    def flag_names(self) -> FrozenSet[str]:
        return frozenset()

    def __and__(self, other: "Expr") -> "Expr":
        return And((self, _as_expr(other)))

    def __or__(self, other: "Expr") -> "Expr":
        return Or((self, _as_expr(other)))

    def __invert__(self) -> "Expr":
        return Not(self)

    def __str__(self) -> str:
        return self.describe()


def _as_expr(value: Any) -> Expr:
    if isinstance(value, Expr):
        return value
    if isinstance(value, bool):
        return ALWAYS if value else NEVER
    raise ConfigError(f"Not a condition expression: {value!r}")


@dataclass(frozen=True)
class Const(Expr):
    value: bool

    def evaluate(self, flags: CategoryFlags, ctx: TriggerContext) -> bool:
        return self.value

    def describe(self) -> str:
        return "always" if self.value else "never"


@dataclass(frozen=True)
class Flag(Expr):
    name: str

    def evaluate(self, flags: CategoryFlags, ctx: TriggerContext) -> bool:
        return flags.is_set(self.name)

    def describe(self) -> str:
        return self.name

    def flag_names(self) -> FrozenSet[str]:
        return frozenset({self.name})


@dataclass(frozen=True)
class Equals(Expr):
    field: str
    value: str

    def __post_init__(self) -> None:
        if self.field not in CONTEXT_FIELDS:
            raise ConfigError(
                f"Unknown context field in condition: {self.field!r}",
                details={"expected": ", ".join(CONTEXT_FIELDS)},
            )
        if self.field == "event":
            # normalise aliases ("scheduled", "workflow_dispatch", ...)
            object.__setattr__(self, "value", TriggerEvent.parse(self.value).value)

    def evaluate(self, flags: CategoryFlags, ctx: TriggerContext) -> bool:
        if self.field == "event":
            return ctx.event.value == self.value
        return ctx.branch == self.value

    def describe(self) -> str:
        return f"{self.field} == {self.value}"


@dataclass(frozen=True)
class And(Expr):
    terms: Tuple[Expr, ...]

    def evaluate(self, flags: CategoryFlags, ctx: TriggerContext) -> bool:
        return all(t.evaluate(flags, ctx) for t in self.terms)

    def describe(self) -> str:
        return "(" + " and ".join(t.describe() for t in self.terms) + ")"

    def flag_names(self) -> FrozenSet[str]:
        return frozenset().union(*(t.flag_names() for t in self.terms))


@dataclass(frozen=True)
class Or(Expr):
    terms: Tuple[Expr, ...]

    def evaluate(self, flags: CategoryFlags, ctx: TriggerContext) -> bool:
        return any(t.evaluate(flags, ctx) for t in self.terms)

    def describe(self) -> str:
        return "(" + " or ".join(t.describe() for t in self.terms) + ")"

    def flag_names(self) -> FrozenSet[str]:
        return frozenset().union(*(t.flag_names() for t in self.terms))


@dataclass(frozen=True)
class Not(Expr):
    term: Expr

    def evaluate(self, flags: CategoryFlags, ctx: TriggerContext) -> bool:
        return not self.term.evaluate(flags, ctx)

    def describe(self) -> str:
        return f"not {self.term.describe()}"

    def flag_names(self) -> FrozenSet[str]:
        return self.term.flag_names()


ALWAYS = Const(True)
NEVER = Const(False)


# ---------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------

def flag(name: str) -> Flag:
    return Flag(name)


def event_is(event: "str | TriggerEvent") -> Equals:
    return Equals("event", TriggerEvent.parse(event).value)


def branch_is(branch: str) -> Equals:
    return Equals("branch", branch)


def all_of(*terms: Expr) -> Expr:
    return And(tuple(_as_expr(t) for t in terms)) if terms else ALWAYS


def any_of(*terms: Expr) -> Expr:
    return Or(tuple(_as_expr(t) for t in terms)) if terms else NEVER


def not_(term: Expr) -> Not:
    return Not(_as_expr(term))


# ---------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------

def evaluate(job: "Job", flags: CategoryFlags, ctx: TriggerContext) -> bool:
    """Decide whether `job` should run for this change-set and trigger."""
    condition = job.condition if job.condition is not None else ALWAYS
    return condition.evaluate(flags, ctx)
