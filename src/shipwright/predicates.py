# predicates.py
"""
Skip predicates.

A step's skip condition is one of four variants, evaluated by the scheduler
against an explicit SkipContext right before dispatch:

    Always()                 -> always skip
    Never()                  -> never skip (default)
    EnvFlagSet("NAME")       -> skip when NAME is set to a truthy value
    Custom(fn, label)        -> skip when fn(context) is true

Custom functions must only look at the context they are handed. The context
is a snapshot, so nothing here reads os.environ directly.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Mapping, Union

FALSY_FLAG_VALUES = frozenset({"", "0", "false", "no", "off"})


@dataclass(frozen=True)
class SkipContext:
    env: Mapping[str, str] = field(default_factory=dict)
    profile: str = "development"
    platform: str = ""

    def flag(self, name: str) -> bool:
        value = self.env.get(name)
        if value is None:
            return False
        return value.strip().lower() not in FALSY_FLAG_VALUES


@dataclass(frozen=True)
class Always:
    def evaluate(self, context: SkipContext) -> bool:
        return True

    def describe(self) -> str:
        return "always"


@dataclass(frozen=True)
class Never:
    def evaluate(self, context: SkipContext) -> bool:
        return False

    def describe(self) -> str:
        return "never"


@dataclass(frozen=True)
class EnvFlagSet:
    name: str

    def evaluate(self, context: SkipContext) -> bool:
        return context.flag(self.name)

    def describe(self) -> str:
        return f"env flag {self.name} set"


@dataclass(frozen=True)
class Custom:
    fn: Callable[[SkipContext], bool]
    label: str = "custom"

    def evaluate(self, context: SkipContext) -> bool:
        return bool(self.fn(context))

    def describe(self) -> str:
        return self.label


SkipPredicate = Union[Always, Never, EnvFlagSet, Custom]


# ---------------------------------------------------------------------
# Common predicates for release pipelines
# ---------------------------------------------------------------------

def unless_env(name: str) -> Custom:
    """Skip unless `name` is set (e.g. signing only when CSC_LINK is present)."""
    return Custom(lambda ctx: not ctx.flag(name), label=f"env flag {name} not set")


def unless_profile(*profiles: str) -> Custom:
    wanted = frozenset(profiles)
    return Custom(lambda ctx: ctx.profile not in wanted, label=f"profile not in {sorted(wanted)}")


def unless_platform(prefix: str) -> Custom:
    return Custom(lambda ctx: not ctx.platform.startswith(prefix), label=f"platform is not {prefix}")
