import json
import sys
import textwrap

from click.testing import CliRunner

from shipwright.cli import cli, find_pipeline_files
from shipwright.model import BuildMetrics
from shipwright.runner import RunOutcome


def _pipeline(tmp_path, body, name="shipwright_pipeline.py"):
    path = tmp_path / name
    path.write_text(textwrap.dedent(body).replace("PYTHON", repr(sys.executable)))
    return path


PASSING = """
    from shipwright.dsl import step

    def steps():
        return [
            step("clean", PYTHON, "-c", "pass"),
            step("compile", PYTHON, "-c", "print('compiled')", needs=["clean"]),
            step("package", PYTHON, "-c", "pass", needs=["compile"], parallel=True),
            step("test", PYTHON, "-c", "pass", needs=["compile"], parallel=True),
        ]
"""

FAILING = """
    from shipwright.dsl import step

    def steps():
        return [
            step("compile", PYTHON, "-c", "import sys; sys.exit(2)"),
            step("package", PYTHON, "-c", "pass", needs=["compile"]),
        ]
"""


def invoke(*args):
    return CliRunner().invoke(cli, list(args), obj={})


def test_run_success(tmp_path):
    _pipeline(tmp_path, PASSING)
    metrics = tmp_path / "metrics.json"

    result = invoke("run", "--root", str(tmp_path), "--workers", "2", "--metrics-file", str(metrics))

    assert result.exit_code == 0, result.output
    assert "BUILD STARTED" in result.output
    assert "4/4 passed" in result.output
    assert json.loads(metrics.read_text())["counts"]["succeeded"] == 4


def test_run_failure_exits_non_zero(tmp_path):
    _pipeline(tmp_path, FAILING)

    result = invoke("run", "--root", str(tmp_path), "--serial")

    assert result.exit_code == 1
    assert "FAILED" in result.output
    assert "NOT RUN" in result.output


def test_run_with_explicit_pipeline_and_profile(tmp_path):
    path = _pipeline(tmp_path, """
        from shipwright.dsl import step
        from shipwright.predicates import unless_profile

        def steps():
            return [
                step("build", PYTHON, "-c", "pass"),
                step("verify", PYTHON, "-c", "import sys; sys.exit(1)", needs=["build"],
                     skip=unless_profile("production")),
            ]
    """, name="release_pipeline.py")

    result = invoke("run", "--root", str(tmp_path), "--pipeline", str(path), "--profile", "ci")

    assert result.exit_code == 0, result.output
    assert "1 skipped" in result.output


def test_run_rejects_cycles(tmp_path):
    _pipeline(tmp_path, """
        from shipwright.dsl import step

        STEPS = [step("a", "true", needs=["b"]), step("b", "true", needs=["a"])]
    """)

    result = invoke("run", "--root", str(tmp_path))

    assert result.exit_code == 1
    assert "Invalid pipeline" in result.output
    assert "cycle" in result.output


def test_run_without_pipeline_file(tmp_path):
    result = invoke("run", "--root", str(tmp_path))
    assert result.exit_code == 1
    assert "No pipeline file found" in result.output


def test_run_with_broken_pipeline_file(tmp_path):
    _pipeline(tmp_path, "X = 1\n")
    result = invoke("run", "--root", str(tmp_path))
    assert result.exit_code == 1
    assert "Failed to load pipeline" in result.output


def test_run_with_pipeline_that_fails_to_import(tmp_path):
    _pipeline(tmp_path, """
        import not_a_real_module_xyz

        STEPS = []
    """)
    result = invoke("run", "--root", str(tmp_path))
    assert result.exit_code == 1
    assert "Failed to load pipeline" in result.output
    assert "ModuleNotFoundError" in result.output


def test_run_reports_unexpected_errors(tmp_path, monkeypatch):
    _pipeline(tmp_path, PASSING)

    def explode(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr("shipwright.cli.run_pipeline", explode)
    result = invoke("run", "--root", str(tmp_path))

    assert result.exit_code == 1
    assert "Error: disk full" in result.output


def test_run_reads_shipwright_environment(tmp_path, monkeypatch):
    _pipeline(tmp_path, PASSING)
    seen = {}

    def capture(steps, config, **kwargs):
        seen["config"] = config
        return RunOutcome(BuildMetrics(0.0, {}), "", 0)

    monkeypatch.setattr("shipwright.cli.run_pipeline", capture)
    monkeypatch.setenv("SHIPWRIGHT_SERIAL", "on")
    monkeypatch.setenv("SHIPWRIGHT_RETRY_DELAY", "0.25")
    monkeypatch.setenv("SHIPWRIGHT_KILL_GRACE", "2")

    result = invoke("run", "--root", str(tmp_path), "--workers", "3")

    assert result.exit_code == 0, result.output
    config = seen["config"]
    assert config.force_serial
    assert config.retry_base_delay == 0.25
    assert config.kill_grace_period == 2.0
    assert config.concurrency_limit == 3


def test_plan_prints_stages(tmp_path):
    _pipeline(tmp_path, PASSING)
    result = invoke("plan", "--root", str(tmp_path))
    assert result.exit_code == 0, result.output
    assert "=== Stage 1: clean ===" in result.output
    assert "=== Stage 3: package, test ===" in result.output


def test_find_pipeline_files(tmp_path):
    (tmp_path / "shipwright_pipeline.py").write_text("")
    (tmp_path / "nightly_pipeline.py").write_text("")
    (tmp_path / "notes.py").write_text("")
    assert [p.name for p in find_pipeline_files(tmp_path)] == ["nightly_pipeline.py", "shipwright_pipeline.py"]
