# cli.py
from __future__ import annotations

import logging
import signal
import sys
from contextlib import contextmanager
from pathlib import Path

import click

from shipwright.config import DEFAULT_OUTPUT_DIR, PROFILES, OrchestratorConfig
from shipwright.errors import GraphError, PipelineLoadError
from shipwright.executor import CancelToken
from shipwright.runner import EXIT_CANCELLED, EXIT_FAILED, build_variables, load_pipeline, plan, run_pipeline
from shipwright.ui.console import Console

DEFAULT_PIPELINE = "shipwright_pipeline.py"


def find_pipeline_files(root: Path) -> list[Path]:
    """
    Find all pipeline files in `root`.

    Returns:
        List of Path objects for pipeline files
    """
    found = []
    default = root / DEFAULT_PIPELINE
    if default.exists():
        found.append(default)
    for path in root.glob("*_pipeline.py"):
        if path != default:
            found.append(path)
    return sorted(found)


def discover_pipeline(console: Console, pipeline_arg: str | None, root: Path) -> Path:
    """
    Resolve the pipeline file from the argument or by looking in `root`.

    Raises:
        SystemExit: If no pipeline, or more than one candidate, is found
    """
    if pipeline_arg:
        path = Path(pipeline_arg)
        if not path.exists() and path.suffix != ".py":
            path = Path(str(path) + ".py")
        if not path.exists():
            console.print_error(
                "Pipeline file not found",
                f"Could not find pipeline file: {pipeline_arg}",
                suggestion="Create a pipeline file or point at one:\n  shipwright run --pipeline release_pipeline.py",
            )
            sys.exit(EXIT_FAILED)
        return path

    candidates = find_pipeline_files(root)
    if not candidates:
        console.print_error(
            "No pipeline file found",
            "Could not find any pipeline files.",
            details=["Looked for:", f"  {DEFAULT_PIPELINE}", "  *_pipeline.py"],
            suggestion=f"Create {DEFAULT_PIPELINE} or pass --pipeline.",
        )
        sys.exit(EXIT_FAILED)
    if len(candidates) > 1:
        console.print_error(
            "Multiple pipeline files found",
            "Found multiple pipeline files. Please specify which one to use:",
            details=[f"  {c}" for c in candidates],
            suggestion=f"  shipwright run --pipeline {candidates[0].name}",
        )
        sys.exit(EXIT_FAILED)
    return candidates[0]


def configure_logging(debug: bool, verbose: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


@contextmanager
def cancel_on_signals(token: CancelToken):
    """Turn SIGINT/SIGTERM into cooperative cancellation for the duration of a run."""
    previous = {}

    def handler(signum, frame):
        token.cancel(f"received {signal.Signals(signum).name}")
        # a second Ctrl-C falls back to the default behaviour
        signal.signal(signal.SIGINT, signal.default_int_handler)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, handler)
        except ValueError:
            # not in the main thread
            pass
    try:
        yield token
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """shipwright: dependency-aware build orchestration for release pipelines."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["console"] = Console(debug=debug)


@cli.command()
@click.option("--pipeline", default=None, help=f"Pipeline file (defaults to {DEFAULT_PIPELINE} if present)")
@click.option("--root", default=".", type=click.Path(file_okay=False), help="Directory step paths are relative to")
@click.option(
    "--profile",
    type=click.Choice(sorted(PROFILES)),
    default="development",
    show_default=True,
    envvar="SHIPWRIGHT_PROFILE",
    help="Build profile",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Stream step output to the terminal instead of capturing it")
@click.option("--clean", is_flag=True, default=False, help="Remove the output directory before running")
@click.option("--serial", is_flag=True, default=False, help="Run one step at a time (or set SHIPWRIGHT_SERIAL)")
@click.option("--workers", default=None, type=click.IntRange(min=1), envvar="SHIPWRIGHT_WORKERS", help="Max parallel steps (default: CPU count)")
@click.option("--timeout", "run_timeout", default=None, type=float, envvar="SHIPWRIGHT_RUN_TIMEOUT", help="Cancel the whole run after N seconds")
@click.option("--fail-fast/--no-fail-fast", default=True, help="Stop launching new steps after the first failure")
@click.option("--output-dir", default=DEFAULT_OUTPUT_DIR, show_default=True, envvar="SHIPWRIGHT_OUTPUT_DIR", help="Shared output root")
@click.option("--metrics-file", default=None, type=click.Path(dir_okay=False), help="Write per-step durations as JSON")
@click.pass_context
def run(ctx, pipeline, root, profile, verbose, clean, serial, workers, run_timeout, fail_fast, output_dir, metrics_file):
    """Run a pipeline."""
    console: Console = ctx.obj["console"]
    debug = ctx.obj.get("debug", False)
    configure_logging(debug, verbose)

    root_path = Path(root).resolve()
    pipeline_path = discover_pipeline(console, pipeline, root_path)

    try:
        # SHIPWRIGHT_* variables first, then whatever was given on the command line
        config = OrchestratorConfig.from_env(
            root_dir=root_path,
            profile=profile,
            env=build_variables(root_path),
            concurrency_limit=workers,
            force_serial=serial or None,
            fail_fast=fail_fast,
            passthrough=verbose,
            clean=clean,
            output_dir=output_dir,
            run_timeout=run_timeout,
            metrics_path=Path(metrics_file) if metrics_file else None,
        )
        steps = load_pipeline(pipeline_path, config)
    except (PipelineLoadError, ValueError) as e:
        console.print_error("Failed to load pipeline", f"Could not load {pipeline_path}", details=[str(e)])
        sys.exit(EXIT_FAILED)

    console.print_run_started(
        pipeline=pipeline_path.name,
        profile=profile,
        step_count=len(steps),
        workers=config.effective_concurrency,
    )
    console.print_debug(f"output root: {config.output_root}")

    token = CancelToken()
    try:
        with cancel_on_signals(token):
            outcome = run_pipeline(steps, config, console=console, cancel_token=token)
    except GraphError as e:
        console.print_error("Invalid pipeline", str(e), details=e.path or None)
        sys.exit(EXIT_FAILED)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_CANCELLED)
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)

    console.print_report(outcome.report)
    if outcome.error is not None:
        console.print_exception(outcome.error)
    sys.exit(outcome.exit_code)


@cli.command(name="plan")
@click.option("--pipeline", default=None, help=f"Pipeline file (defaults to {DEFAULT_PIPELINE} if present)")
@click.option("--root", default=".", type=click.Path(file_okay=False), help="Directory step paths are relative to")
@click.option("--profile", type=click.Choice(sorted(PROFILES)), default="development", envvar="SHIPWRIGHT_PROFILE")
@click.pass_context
def plan_cmd(ctx, pipeline, root, profile):
    """Validate a pipeline and print its dependency stages without running anything."""
    console: Console = ctx.obj["console"]
    root_path = Path(root).resolve()
    pipeline_path = discover_pipeline(console, pipeline, root_path)
    config = OrchestratorConfig.from_env(root_dir=root_path, profile=profile)

    try:
        steps = load_pipeline(pipeline_path, config)
        levels = plan(steps)
    except PipelineLoadError as e:
        console.print_error("Failed to load pipeline", str(e))
        sys.exit(EXIT_FAILED)
    except GraphError as e:
        console.print_error("Invalid pipeline", str(e), details=e.path or None)
        sys.exit(EXIT_FAILED)

    console.print_header(f"Plan: {pipeline_path.name}")
    console.print_plan(levels)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
