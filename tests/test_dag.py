import pytest

from shipwright.dag import StepGraph
from shipwright.dsl import step
from shipwright.errors import CYCLE, OUTPUT_OVERLAP, UNKNOWN_DEPENDENCY, DuplicateStepError, GraphError
from shipwright.predicates import Always, EnvFlagSet, SkipContext


def _s(name, needs=(), **kwargs):
    return step(name, "true", needs=list(needs), **kwargs)


def release_graph():
    return StepGraph([
        _s("clean"),
        _s("compile", ["clean"]),
        _s("package", ["compile"], parallel=True),
        _s("test", ["compile"], parallel=True),
    ])


def test_duplicate_step_is_rejected():
    graph = StepGraph([_s("clean")])
    with pytest.raises(DuplicateStepError) as exc:
        graph.add_step(_s("clean"))
    assert exc.value.kind == "duplicate_step"
    assert exc.value.path == ["clean"]


def test_unknown_dependency_names_the_missing_step():
    graph = StepGraph([_s("compile", ["clean"])])
    with pytest.raises(GraphError) as exc:
        graph.validate()
    assert exc.value.kind == UNKNOWN_DEPENDENCY
    assert exc.value.path == ["compile", "clean"]


def test_three_step_cycle_reports_the_path():
    graph = StepGraph([_s("A", ["C"]), _s("B", ["A"]), _s("C", ["B"])])
    with pytest.raises(GraphError) as exc:
        graph.validate()
    assert exc.value.kind == CYCLE
    path = exc.value.path
    assert path[0] == path[-1]
    assert set(path) == {"A", "B", "C"}
    assert len(path) == 4
    assert "->" in str(exc.value)


def test_self_dependency_is_a_cycle():
    graph = StepGraph([_s("loop", ["loop"])])
    with pytest.raises(GraphError) as exc:
        graph.validate()
    assert exc.value.path == ["loop", "loop"]


def test_runnable_steps_follow_dependencies():
    graph = release_graph()
    graph.validate()

    first = graph.runnable_steps(set())
    assert [r.step.name for r in first] == ["clean"]

    after_clean = graph.runnable_steps({"clean"})
    assert [r.step.name for r in after_clean] == ["compile"]

    after_compile = graph.runnable_steps({"clean", "compile"})
    assert [r.step.name for r in after_compile] == ["package", "test"]


def test_runnable_steps_exclude_started_steps():
    graph = release_graph()
    graph.validate()
    ready = graph.runnable_steps({"clean", "compile"}, started={"clean", "compile", "package"})
    assert [r.step.name for r in ready] == ["test"]


def test_runnable_steps_carry_skip_decision():
    graph = StepGraph([
        _s("sign", skip=EnvFlagSet("NO_SIGN")),
        _s("lint", skip=Always()),
        _s("build"),
    ])
    graph.validate()
    ctx = SkipContext(env={"NO_SIGN": "1"})
    decisions = {r.step.name: r.skip for r in graph.runnable_steps(set(), ctx)}
    assert decisions == {"sign": True, "lint": True, "build": False}


def test_artifact_contract_derives_edges():
    graph = StepGraph([
        _s("bundle", produces=["web/build"], parallel=True),
        _s("electron", consumes=["web/build/index.html"]),
    ])
    assert graph.dependencies_of("electron") == ()
    graph.validate()
    assert graph.dependencies_of("electron") == ("bundle",)
    assert graph.dependents_of("bundle") == ["electron"]
    assert [r.step.name for r in graph.runnable_steps(set())] == ["bundle"]


def test_consuming_an_external_path_adds_no_edge():
    graph = StepGraph([_s("compile", consumes=["src"])])
    graph.validate()
    assert graph.dependencies_of("compile") == ()


def test_overlapping_outputs_without_ordering_are_rejected():
    graph = StepGraph([
        _s("package-mac", produces=["dist"], parallel=True),
        _s("package-win", produces=["./dist/win/"], parallel=True),
    ])
    with pytest.raises(GraphError) as exc:
        graph.validate()
    assert exc.value.kind == OUTPUT_OVERLAP
    assert exc.value.path == ["package-mac", "package-win"]


def test_overlapping_outputs_are_fine_when_ordered():
    graph = StepGraph([
        _s("package", produces=["dist"]),
        _s("checksums", ["package"], produces=["dist/SHA256SUMS"]),
    ])
    graph.validate()


def test_disjoint_outputs_may_run_in_parallel():
    graph = StepGraph([
        _s("package-mac", produces=["dist/mac"], parallel=True),
        _s("package-win", produces=["dist/win"], parallel=True),
    ])
    graph.validate()


def test_levels_group_independent_steps():
    graph = release_graph()
    graph.validate()
    assert graph.levels() == [["clean"], ["compile"], ["package", "test"]]
