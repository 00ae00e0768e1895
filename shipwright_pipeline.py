# shipwright_pipeline.py
# Release pipeline for the desktop app: native Rust modules, web bundle,
# Electron shell, per-platform packages, then signing and verification.
from __future__ import annotations

import sys

from shipwright.dsl import cmd, matrix, pipeline, sh
from shipwright.predicates import Custom, EnvFlagSet, unless_env, unless_profile

PLATFORM_TARGETS = {
    "darwin": ["mac-x64", "mac-arm64"],
    "win32": ["win-x64"],
    "linux": ["linux-x64"],
}


def _targets() -> list[str]:
    for prefix, targets in PLATFORM_TARGETS.items():
        if sys.platform.startswith(prefix):
            return targets
    return PLATFORM_TARGETS["linux"]


def steps(config):
    cargo_profile = "--release" if config.profile != "development" else ""
    targets = matrix("target", _targets())

    return pipeline(
        sh("clean", "rm -rf dist electron/dist web/build", skip=EnvFlagSet("SKIP_CLEAN")),

        # Native modules and the web bundle don't touch each other's trees.
        cmd(
            "rust-native",
            f"cargo build --workspace {cargo_profile}",
            needs=["clean"],
            parallel=True,
            retries=1,
            timeout=1800,
            produces=["target"],
        ),
        cmd(
            "web-bundle",
            "npm run build",
            cwd="web",
            needs=["clean"],
            parallel=True,
            produces=["web/build"],
        ),

        cmd(
            "electron-compile",
            "npm run build",
            cwd="electron",
            consumes=["target", "web/build"],
            produces=["electron/dist"],
        ),

        cmd("test", "cargo test --workspace", needs=["rust-native"], parallel=True, retries=2,
            skip=EnvFlagSet("SKIP_TESTS")),

        targets.steps(
            lambda t: cmd(
                f"package-{t}",
                f"npx electron-builder --config electron/electron-builder.config.ts --{t.split('-')[0]} --{t.split('-')[1]}",
                consumes=["electron/dist"],
                produces=[f"dist/{t}"],
                parallel=True,
                timeout=3600,
            )
        ),

        cmd(
            "sign",
            "npx ts-node scripts/sign-windows.ts" if sys.platform == "win32" else "npx ts-node scripts/sign-macos.ts",
            needs=targets.names("package-{target}"),
            skip=unless_env("CSC_LINK"),
        ),
        cmd(
            "notarize",
            "npx ts-node scripts/notarize-macos.ts",
            needs=["sign"],
            retries=3,
            skip=Custom(
                lambda ctx: not (ctx.platform.startswith("darwin") and ctx.flag("APPLE_ID")),
                label="not macOS or APPLE_ID not set",
            ),
        ),
        cmd(
            "verify",
            "bash scripts/verify-build.sh",
            needs=["notarize", "test"],
            skip=unless_profile("production", "ci"),
        ),
    )
