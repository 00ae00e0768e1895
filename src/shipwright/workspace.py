# workspace.py
"""
Shared output directory convention.

Several steps may write into the same output root. Nothing here takes a
lock; the convention is that every step writes only below

    <output root>/<step name>/

which the executor creates and exports as SHIPWRIGHT_STEP_OUTPUT. Steps
that need to hand files to each other declare them through the artifact
contract (`produces` / `consumes`) so the graph orders them.
"""
from __future__ import annotations

import re
import shutil
from pathlib import Path

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def step_dirname(step_name: str) -> str:
    """Filesystem-safe directory name for a step (matrix names may contain ':' or '/')."""
    cleaned = _UNSAFE.sub("_", step_name).strip("._")
    return cleaned or "step"


def step_output_dir(output_root: str | Path, step_name: str, *, create: bool = True) -> Path:
    d = Path(output_root) / step_dirname(step_name)
    if create:
        d.mkdir(parents=True, exist_ok=True)
    return d


def ensure_clean_dir(path: str | Path) -> None:
    p = Path(path)
    if p.exists():
        shutil.rmtree(p)
    p.mkdir(parents=True, exist_ok=True)
