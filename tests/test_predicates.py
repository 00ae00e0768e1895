from shipwright.config import OrchestratorConfig
from shipwright.predicates import (
    Always,
    Custom,
    EnvFlagSet,
    Never,
    SkipContext,
    unless_env,
    unless_platform,
    unless_profile,
)


def test_always_and_never():
    ctx = SkipContext()
    assert Always().evaluate(ctx) is True
    assert Never().evaluate(ctx) is False


def test_env_flag_set_treats_falsy_strings_as_unset():
    pred = EnvFlagSet("SKIP_TESTS")
    assert pred.evaluate(SkipContext(env={"SKIP_TESTS": "1"}))
    assert pred.evaluate(SkipContext(env={"SKIP_TESTS": "yes"}))
    for value in ("", "0", "false", "No", "OFF"):
        assert not pred.evaluate(SkipContext(env={"SKIP_TESTS": value}))
    assert not pred.evaluate(SkipContext(env={}))


def test_custom_only_sees_the_context():
    pred = Custom(lambda ctx: ctx.profile == "development", label="dev builds")
    assert pred.evaluate(SkipContext(profile="development"))
    assert not pred.evaluate(SkipContext(profile="production"))
    assert pred.describe() == "dev builds"


def test_release_helpers():
    ctx = SkipContext(env={"CSC_LINK": "cert.p12"}, profile="ci", platform="linux")
    assert not unless_env("CSC_LINK").evaluate(ctx)
    assert unless_env("APPLE_ID").evaluate(ctx)
    assert not unless_profile("production", "ci").evaluate(ctx)
    assert unless_profile("production").evaluate(ctx)
    assert unless_platform("darwin").evaluate(ctx)


def test_config_skip_context_layers_config_env_over_base(tmp_path):
    config = OrchestratorConfig(root_dir=tmp_path, profile="production", env={"SKIP_TESTS": "1"})
    ctx = config.skip_context(base_env={"SKIP_TESTS": "0", "HOME": "/home/ci"})
    assert ctx.flag("SKIP_TESTS")
    assert ctx.env["HOME"] == "/home/ci"
    assert ctx.env["NODE_ENV"] == "production"
    assert ctx.profile == "production"
