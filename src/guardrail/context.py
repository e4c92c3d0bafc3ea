# context.py
# Run-scoped values that are read-only once captured: the trigger that started
# the run and the category flags derived from the change-set.
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Optional

from .errors import ConfigError


class TriggerEvent(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    SCHEDULE = "schedule"
    MANUAL = "manual"

    @classmethod
    def parse(cls, value: "str | TriggerEvent") -> "TriggerEvent":
        """Parse an event name, accepting the spellings CI hosts use."""
        if isinstance(value, TriggerEvent):
            return value
        raw = str(value).strip().lower()
        aliases = {
            "scheduled": cls.SCHEDULE,
            "cron": cls.SCHEDULE,
            "workflow_dispatch": cls.MANUAL,
            "pull-request": cls.PULL_REQUEST,
            "pr": cls.PULL_REQUEST,
        }
        if raw in aliases:
            return aliases[raw]
        try:
            return cls(raw)
        except ValueError:
            raise ConfigError(
                f"Unknown trigger event: {value!r}",
                details={"expected": ", ".join(e.value for e in cls)},
            ) from None


@dataclass(frozen=True)
class TriggerContext:
    event: TriggerEvent = TriggerEvent.PUSH
    branch: str = ""

    def as_env(self) -> Dict[str, str]:
        return {
            "GUARDRAIL_EVENT": self.event.value,
            "GUARDRAIL_BRANCH": self.branch,
        }


class CategoryFlags(Mapping):
    """
    Read-only mapping of category name -> matched.

    Use is_set() for condition lookups: a category the detector never saw
    is simply false.
    """

    __slots__ = ("_flags",)

    def __init__(self, flags: Optional[Mapping[str, bool]] = None):
        self._flags: Dict[str, bool] = {k: bool(v) for k, v in (flags or {}).items()}

    def __getitem__(self, name: str) -> bool:
        return self._flags[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._flags)

    def __len__(self) -> int:
        return len(self._flags)

    def __repr__(self) -> str:
        return f"CategoryFlags({self._flags!r})"

    def is_set(self, name: str) -> bool:
        return self._flags.get(name, False)
