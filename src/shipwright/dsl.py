# src/shipwright/dsl.py
from __future__ import annotations

import shlex
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .model import Step
from .predicates import Always, Never, SkipPredicate


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def step(
    name: str,
    command: str,
    *args: str,
    needs: Optional[Sequence[str]] = None,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    parallel: bool = False,
    skip: SkipPredicate | bool | None = None,
    retries: int = 0,
    timeout: float | None = None,
    produces: Optional[Sequence[str]] = None,
    consumes: Optional[Sequence[str]] = None,
    description: str = "",
) -> Step:
    """Create a step that runs `command` with `args` (no shell involved)."""
    if isinstance(skip, bool):
        skip = Always() if skip else Never()
    return Step(
        name=name,
        command=command,
        args=tuple(args),
        cwd=cwd,
        env=dict(env or {}),
        depends_on=tuple(needs or ()),
        parallel=parallel,
        skip=skip or Never(),
        max_retries=retries,
        timeout=timeout,
        produces=tuple(produces or ()),
        consumes=tuple(consumes or ()),
        description=description,
    )


def cmd(name: str, command_line: str, **kwargs: Any) -> Step:
    """Like step(), but split a command line the way a POSIX shell would."""
    argv = shlex.split(command_line)
    if not argv:
        raise ValueError(f"cmd({name!r}) got an empty command line")
    return step(name, argv[0], *argv[1:], **kwargs)


def sh(name: str, script: str, *, shell: str = "/bin/sh", **kwargs: Any) -> Step:
    """Run `script` through a shell. Use when you need pipes, globs or `&&`."""
    return step(name, shell, "-c", script, **kwargs)


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class StepBuilder:
    def __init__(self, name: str):
        self.name = name
        self._command: Optional[List[str]] = None
        self._needs: list[str] = []
        self._env: dict[str, str] = {}
        self._cwd: str | None = None
        self._parallel = False
        self._skip: SkipPredicate = Never()
        self._retries = 0
        self._timeout: float | None = None
        self._produces: list[str] = []
        self._consumes: list[str] = []
        self._description = ""

    def run(self, command: str, *args: str):
        self._command = [command, *args]
        return self

    def depends_on(self, *step_names: str):
        self._needs.extend(step_names)
        return self

    def in_dir(self, cwd: str):
        self._cwd = cwd
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def parallel(self, enabled: bool = True):
        self._parallel = enabled
        return self

    def skip_when(self, predicate: SkipPredicate):
        self._skip = predicate
        return self

    def retry(self, times: int):
        self._retries = times
        return self

    def timeout(self, seconds: float):
        self._timeout = seconds
        return self

    def produces(self, *paths: str):
        self._produces.extend(paths)
        return self

    def consumes(self, *paths: str):
        self._consumes.extend(paths)
        return self

    def describe(self, text: str):
        self._description = text
        return self

    def build(self) -> Step:
        if not self._command:
            raise ValueError(f"Step '{self.name}' has no command")
        return step(
            self.name,
            *self._command,
            needs=self._needs,
            cwd=self._cwd,
            env=self._env,
            parallel=self._parallel,
            skip=self._skip,
            retries=self._retries,
            timeout=self._timeout,
            produces=self._produces,
            consumes=self._consumes,
            description=self._description,
        )


def build(name: str) -> StepBuilder:
    """Convenience: build('bundle').run('npm', 'run', 'build').parallel().build()"""
    return StepBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander, typically over platform targets.

    Example:
        matrix("target", ["darwin-arm64", "linux-x64"]).steps(
            lambda t: cmd(f"package:{t}", f"electron-builder --{t}", parallel=True)
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def steps(self, builder: Callable[[Any], Step]) -> List[Step]:
        return [builder(v) for v in self.values]

    def names(self, fmt: str) -> List[str]:
        """Names of the expanded steps, for use in `needs=`."""
        return [fmt.format(**{self.key: v}) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Pipeline helper
# ---------------------------------------------------------------------

def pipeline(*items: Step | Iterable[Step]) -> List[Step]:
    """
    Flatten steps and matrix expansions into the ordered list a pipeline
    file returns. Declaration order is kept; it decides the order of
    sequential steps.

        def pipeline_steps():
            return pipeline(step(...), matrix(...).steps(...), step(...))
    """
    out: List[Step] = []
    for item in items:
        if isinstance(item, Step):
            out.append(item)
        else:
            out.extend(item)
    return out


def with_cwd(steps: Iterable[Step], cwd: str) -> List[Step]:
    """Apply a default cwd to steps that do not set one."""
    return [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps]
