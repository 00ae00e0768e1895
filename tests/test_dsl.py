import pytest

from shipwright.dsl import build, cmd, matrix, pipeline, sh, step, with_cwd
from shipwright.predicates import Always, EnvFlagSet, Never


def test_step_defaults():
    s = step("clean", "rm", "-rf", "dist")
    assert s.argv == ["rm", "-rf", "dist"]
    assert s.depends_on == ()
    assert not s.parallel
    assert isinstance(s.skip, Never)
    assert s.max_retries == 0


def test_step_bool_skip_and_deduped_needs():
    s = step("sign", "true", needs=["package", "package"], skip=True)
    assert isinstance(s.skip, Always)
    assert s.depends_on == ("package",)


def test_invalid_steps_are_rejected():
    with pytest.raises(ValueError):
        step("", "true")
    with pytest.raises(ValueError):
        step("x", "true", retries=-1)
    with pytest.raises(ValueError):
        step("x", "true", timeout=0)
    with pytest.raises(ValueError):
        cmd("x", "   ")


def test_cmd_splits_like_a_shell():
    s = cmd("bundle", "npm run build -- --out 'web build'", cwd="web", parallel=True)
    assert s.argv == ["npm", "run", "build", "--", "--out", "web build"]
    assert s.cwd == "web"
    assert s.parallel


def test_sh_wraps_script():
    s = sh("clean", "rm -rf dist && mkdir dist")
    assert s.argv == ["/bin/sh", "-c", "rm -rf dist && mkdir dist"]


def test_builder_matches_step_helper():
    built = (
        build("test")
        .run("cargo", "test")
        .depends_on("rust-native")
        .in_dir("native")
        .with_env(RUST_BACKTRACE=1)
        .parallel()
        .skip_when(EnvFlagSet("SKIP_TESTS"))
        .retry(2)
        .timeout(600)
        .produces("native/target/test-reports")
        .describe("unit tests")
        .build()
    )
    assert built.argv == ["cargo", "test"]
    assert built.depends_on == ("rust-native",)
    assert built.env == {"RUST_BACKTRACE": "1"}
    assert built.max_retries == 2
    assert built.timeout == 600
    assert built.skip == EnvFlagSet("SKIP_TESTS")
    assert built.description == "unit tests"


def test_builder_without_command():
    with pytest.raises(ValueError):
        build("empty").build()


def test_matrix_and_pipeline_flatten_in_order():
    targets = matrix("target", ["mac-arm64", "win-x64"])
    steps = pipeline(
        step("compile", "true"),
        targets.steps(lambda t: step(f"package-{t}", "true", needs=["compile"])),
        step("sign", "true", needs=targets.names("package-{target}")),
    )
    assert [s.name for s in steps] == ["compile", "package-mac-arm64", "package-win-x64", "sign"]
    assert steps[-1].depends_on == ("package-mac-arm64", "package-win-x64")


def test_with_cwd_keeps_explicit_cwd():
    steps = with_cwd([step("a", "true"), step("b", "true", cwd="web")], "electron")
    assert [s.cwd for s in steps] == ["electron", "web"]
