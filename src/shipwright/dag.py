# dag.py
from __future__ import annotations

from collections import deque
from pathlib import PurePosixPath
from typing import Dict, Iterable, List, NamedTuple, Optional, Set, Tuple

from .errors import (
    CYCLE,
    OUTPUT_OVERLAP,
    UNKNOWN_DEPENDENCY,
    DuplicateStepError,
    GraphError,
)
from .model import Step
from .predicates import SkipContext


class Ready(NamedTuple):
    """
    A step whose dependencies are satisfied. `skip` means resolve without
    running; `error` is set when the skip predicate itself raised.
    """
    step: Step
    skip: bool
    error: Optional[str] = None


def _norm(path: str) -> PurePosixPath:
    cleaned = path.replace("\\", "/").strip()
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return PurePosixPath(cleaned.rstrip("/") or ".")


def _overlaps(a: PurePosixPath, b: PurePosixPath) -> bool:
    return a == b or a in b.parents or b in a.parents


class StepGraph:
    """
    Step definitions plus dependency edges.

    Edges come from two places: each step's declared `depends_on`, and the
    artifact contract (a step consuming a path another step produces gets
    an implicit edge on the producer). Derived edges are computed by
    `validate()` and kept here; the Step objects are never modified.
    """

    def __init__(self, steps: Iterable[Step] = ()):
        self._steps: Dict[str, Step] = {}
        self._derived: Dict[str, Set[str]] = {}
        for s in steps:
            self.add_step(s)

    # ------------------------------------------------------------------
    # registration
    # ------------------------------------------------------------------

    def add_step(self, step: Step) -> None:
        if step.name in self._steps:
            raise DuplicateStepError(step.name)
        self._steps[step.name] = step

    def __len__(self) -> int:
        return len(self._steps)

    def __contains__(self, name: str) -> bool:
        return name in self._steps

    def __getitem__(self, name: str) -> Step:
        return self._steps[name]

    @property
    def names(self) -> List[str]:
        """Step names in declaration order."""
        return list(self._steps)

    @property
    def steps(self) -> List[Step]:
        return list(self._steps.values())

    def dependencies_of(self, name: str) -> Tuple[str, ...]:
        """Declared dependencies followed by contract-derived ones."""
        declared = self._steps[name].depends_on
        extra = sorted(self._derived.get(name, set()) - set(declared))
        return tuple(declared) + tuple(extra)

    def dependents_of(self, name: str) -> List[str]:
        return [n for n in self._steps if name in self.dependencies_of(n)]

    # ------------------------------------------------------------------
    # validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """
        Check the graph before anything runs.

        Raises GraphError for unknown dependencies, cycles (the cycle path is
        reported) and overlapping outputs between steps with no ordering.
        """
        for step in self._steps.values():
            for dep in step.depends_on:
                if dep not in self._steps:
                    raise GraphError(
                        UNKNOWN_DEPENDENCY,
                        f"Step '{step.name}' depends on missing step '{dep}'. "
                        f"Known steps: {sorted(self._steps)}",
                        [step.name, dep],
                    )

        self._derived = self._derive_contract_edges()

        cycle = self._find_cycle()
        if cycle:
            raise GraphError(CYCLE, "dependency cycle detected", cycle)

        self._check_output_overlap()

    def _derive_contract_edges(self) -> Dict[str, Set[str]]:
        produced: List[Tuple[str, PurePosixPath]] = [
            (s.name, _norm(p)) for s in self._steps.values() for p in s.produces
        ]
        derived: Dict[str, Set[str]] = {}
        for consumer in self._steps.values():
            for raw in consumer.consumes:
                wanted = _norm(raw)
                for producer, path in produced:
                    if producer != consumer.name and _overlaps(wanted, path):
                        derived.setdefault(consumer.name, set()).add(producer)
        return derived

    def _find_cycle(self) -> Optional[List[str]]:
        # three-colour DFS; returns the first cycle found as a closed path
        WHITE, GREY, BLACK = 0, 1, 2
        colour = {n: WHITE for n in self._steps}
        stack: List[str] = []

        def visit(node: str) -> Optional[List[str]]:
            colour[node] = GREY
            stack.append(node)
            for dep in self.dependencies_of(node):
                if colour[dep] == GREY:
                    start = stack.index(dep)
                    # report in execution order: dep would have to run first
                    return [dep] + list(reversed(stack[start + 1:])) + [dep]
                if colour[dep] == WHITE:
                    found = visit(dep)
                    if found:
                        return found
            stack.pop()
            colour[node] = BLACK
            return None

        for name in self._steps:
            if colour[name] == WHITE:
                found = visit(name)
                if found:
                    return found
        return None

    def ancestors(self, name: str) -> Set[str]:
        seen: Set[str] = set()
        todo = list(self.dependencies_of(name))
        while todo:
            n = todo.pop()
            if n in seen:
                continue
            seen.add(n)
            todo.extend(self.dependencies_of(n))
        return seen

    def _check_output_overlap(self) -> None:
        producers = [s for s in self._steps.values() if s.produces]
        ancestors = {s.name: self.ancestors(s.name) for s in producers}
        for i, a in enumerate(producers):
            for b in producers[i + 1:]:
                clash = [
                    (pa, pb)
                    for pa in a.produces
                    for pb in b.produces
                    if _overlaps(_norm(pa), _norm(pb))
                ]
                if not clash:
                    continue
                if a.name in ancestors[b.name] or b.name in ancestors[a.name]:
                    continue
                pa, pb = clash[0]
                raise GraphError(
                    OUTPUT_OVERLAP,
                    f"Steps '{a.name}' and '{b.name}' write overlapping outputs "
                    f"('{pa}' / '{pb}') with no dependency between them. "
                    f"Give each step its own output path or add depends_on.",
                    [a.name, b.name],
                )

    # ------------------------------------------------------------------
    # runnability
    # ------------------------------------------------------------------

    def runnable_steps(
        self,
        completed: Set[str],
        context: Optional[SkipContext] = None,
        started: Iterable[str] = (),
    ) -> List[Ready]:
        """
        Steps not yet started whose dependencies are all in `completed`
        (succeeded or skipped), in declaration order. Each comes with its
        evaluated skip predicate. A predicate that raises is reported on the
        Ready entry instead of propagating.
        """
        context = context or SkipContext()
        started = set(started) | set(completed)
        ready: List[Ready] = []
        for name, step in self._steps.items():
            if name in started:
                continue
            if not all(dep in completed for dep in self.dependencies_of(name)):
                continue
            try:
                skip = step.skip.evaluate(context)
            except Exception as e:
                ready.append(Ready(step, False, f"skip predicate error: {type(e).__name__}: {e}"))
                continue
            ready.append(Ready(step, skip))
        return ready

    # ------------------------------------------------------------------
    # plan preview
    # ------------------------------------------------------------------

    def levels(self) -> List[List[str]]:
        """
        Topological "levels". Everything in a level only depends on earlier
        levels. Used for plan output; the scheduler does not run by level.
        """
        adj: Dict[str, Set[str]] = {n: set() for n in self._steps}
        indeg: Dict[str, int] = {n: 0 for n in self._steps}
        for name in self._steps:
            for dep in self.dependencies_of(name):
                if dep in adj and name not in adj[dep]:
                    adj[dep].add(name)
                    indeg[name] += 1

        order = {n: i for i, n in enumerate(self._steps)}
        q = deque(n for n in self._steps if indeg[n] == 0)
        levels: List[List[str]] = []
        processed = 0

        while q:
            level_size = len(q)
            level: List[str] = []
            for _ in range(level_size):
                node = q.popleft()
                level.append(node)
                processed += 1
                for child in sorted(adj[node], key=order.__getitem__):
                    indeg[child] -= 1
                    if indeg[child] == 0:
                        q.append(child)
            levels.append(level)

        if processed != len(indeg):
            remaining = sorted(n for n, d in indeg.items() if d > 0)
            raise GraphError(CYCLE, f"graph has a cycle. Stuck steps: {remaining}", remaining)

        return levels
