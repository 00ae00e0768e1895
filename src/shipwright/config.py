# config.py
from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

from .predicates import SkipContext

# Profile -> variables exported to every step. Mirrors the release/dev split
# used by the native (cargo) and web (NODE_ENV) toolchains.
PROFILES: Dict[str, Dict[str, str]] = {
    "development": {"NODE_ENV": "development", "BUILD_PROFILE": "dev"},
    "production": {"NODE_ENV": "production", "BUILD_PROFILE": "release"},
    "ci": {"NODE_ENV": "production", "BUILD_PROFILE": "ci", "CI": "true"},
}

DEFAULT_PROFILE = "development"
DEFAULT_OUTPUT_DIR = ".shipwright/out"
ENV_PREFIX = "SHIPWRIGHT_"


def default_concurrency() -> int:
    return os.cpu_count() or 1


@dataclass(frozen=True)
class OrchestratorConfig:
    """
    Run configuration. Built once before a run and handed to the graph,
    executor and scheduler; nothing reads it from module state.
    """
    root_dir: Path = field(default_factory=Path.cwd)
    profile: str = DEFAULT_PROFILE
    env: Mapping[str, str] = field(default_factory=dict)

    concurrency_limit: int = field(default_factory=default_concurrency)
    force_serial: bool = False
    fail_fast: bool = True

    passthrough: bool = False   # verbose: stream step output to the terminal
    clean: bool = False         # wipe output_dir before the run
    output_dir: str = DEFAULT_OUTPUT_DIR

    retry_base_delay: float = 1.0
    kill_grace_period: float = 5.0
    run_timeout: Optional[float] = None
    default_step_timeout: Optional[float] = None
    output_tail: int = 4000
    poll_interval: float = 0.1

    metrics_path: Optional[Path] = None
    platform: str = sys.platform

    def __post_init__(self) -> None:
        if self.profile not in PROFILES:
            raise ValueError(f"Unknown profile {self.profile!r}. Known profiles: {sorted(PROFILES)}")
        if self.concurrency_limit < 1:
            raise ValueError("concurrency_limit must be >= 1")
        if self.run_timeout is not None and self.run_timeout <= 0:
            raise ValueError("run_timeout must be positive")
        object.__setattr__(self, "root_dir", Path(self.root_dir).resolve())
        object.__setattr__(self, "env", {k: str(v) for k, v in dict(self.env).items()})

    @property
    def effective_concurrency(self) -> int:
        return 1 if self.force_serial else self.concurrency_limit

    @property
    def output_root(self) -> Path:
        return (self.root_dir / self.output_dir).resolve()

    def global_env(self) -> Dict[str, str]:
        """Orchestrator-level variables: profile defaults, then explicit config env."""
        merged: Dict[str, str] = {"SHIPWRIGHT_PROFILE": self.profile}
        merged.update(PROFILES[self.profile])
        merged.update(self.env)
        return merged

    def skip_context(self, base_env: Optional[Mapping[str, str]] = None) -> SkipContext:
        env = dict(os.environ if base_env is None else base_env)
        env.update(self.global_env())
        return SkipContext(env=env, profile=self.profile, platform=self.platform)

    def with_overrides(self, **changes) -> OrchestratorConfig:
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> OrchestratorConfig:
        """
        Build a config from SHIPWRIGHT_* variables, then apply overrides.

        Recognised: SHIPWRIGHT_PROFILE, SHIPWRIGHT_WORKERS, SHIPWRIGHT_SERIAL,
        SHIPWRIGHT_OUTPUT_DIR, SHIPWRIGHT_RUN_TIMEOUT, SHIPWRIGHT_RETRY_DELAY,
        SHIPWRIGHT_KILL_GRACE.
        """
        environ = os.environ if environ is None else environ
        kwargs: Dict[str, object] = {}

        def get(name: str) -> Optional[str]:
            value = environ.get(ENV_PREFIX + name)
            return value if value not in (None, "") else None

        if get("PROFILE"):
            kwargs["profile"] = get("PROFILE")
        if get("WORKERS"):
            kwargs["concurrency_limit"] = int(get("WORKERS"))
        if get("SERIAL"):
            kwargs["force_serial"] = get("SERIAL").lower() in ("1", "true", "yes", "on")
        if get("OUTPUT_DIR"):
            kwargs["output_dir"] = get("OUTPUT_DIR")
        if get("RUN_TIMEOUT"):
            kwargs["run_timeout"] = float(get("RUN_TIMEOUT"))
        if get("RETRY_DELAY"):
            kwargs["retry_base_delay"] = float(get("RETRY_DELAY"))
        if get("KILL_GRACE"):
            kwargs["kill_grace_period"] = float(get("KILL_GRACE"))

        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**kwargs)
