# blossom/modules/steps.py
"""
steps.py - execute manifest build steps

Each action type (CommandAction, MoveAction, ...) has one handler registered
with @step_handler; run_step picks the handler by the type of step.action.
Every failure is reported as StepExecutionFailure carrying the step name.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional

from blossom.modules.config import get_build_config
from blossom.modules.errors import StepExecutionFailure
from blossom.modules.logging import get_logger
from blossom.modules.meta import CommandAction, MoveAction, Package, Step
from blossom.modules.runners import base_env, get_runner

logger = get_logger("steps")


@dataclass
class StepContext:
    workdir: Path
    sources_dir: Path
    output_dir: Path
    env: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None


_HANDLERS: Dict[type, Callable[[Step, StepContext], None]] = {}

def step_handler(action_type: type):
    def deco(fn: Callable[[Step, StepContext], None]):
        _HANDLERS[action_type] = fn
        return fn
    return deco


def resolve_output_dir(package: Package, workdir: Path) -> Path:
    """directories.output from the manifest if present, else build.output_dir."""
    raw = package.directories.get("output") or get_build_config().get("output_dir", "pkg")
    p = Path(raw)
    return p if p.is_absolute() else workdir / p


def build_step_env(package: Package, workdir: Path, sources_dir: Path, output_dir: Path) -> Dict[str, str]:
    extra: Dict[str, str] = dict(get_build_config().get("env") or {})
    extra.update({
        "PKG_NAME": package.info.name,
        "PKG_VERSION": package.info.version,
        "SRCDIR": str(sources_dir.resolve()),
        "OUTDIR": str(output_dir.resolve()),
    })
    for logical, raw in package.directories.items():
        p = Path(raw)
        extra[logical.upper()] = str(p if p.is_absolute() else (workdir / p).resolve())
    return base_env(extra)


def make_context(package: Package, workdir: Path, sources_dir: Path) -> StepContext:
    output_dir = resolve_output_dir(package, workdir)
    timeout = get_build_config().get("step_timeout")
    return StepContext(
        workdir=workdir,
        sources_dir=sources_dir,
        output_dir=output_dir,
        env=build_step_env(package, workdir, sources_dir, output_dir),
        timeout=timeout,
    )

# ----------------------------
# handlers
# ----------------------------
@step_handler(CommandAction)
def _run_command(step: Step, ctx: StepContext) -> None:
    action: CommandAction = step.action
    runner = get_runner(action.runner)
    try:
        code = runner.run(action.command, cwd=ctx.workdir, env=ctx.env, timeout=ctx.timeout)
    except OSError as e:
        raise StepExecutionFailure(step.name, str(e)) from e
    if code != 0:
        logger.error("Step '%s' exited with status %s", step.name, code)
        raise StepExecutionFailure(step.name)


@step_handler(MoveAction)
def _run_move(step: Step, ctx: StepContext) -> None:
    action: MoveAction = step.action
    src = Path(action.path)
    if not src.is_absolute():
        src = ctx.workdir / src
    if not (src.exists() or src.is_symlink()):
        raise StepExecutionFailure(step.name, f"{action.path} does not exist")
    dest = ctx.output_dir / src.name
    # compare real locations; replacing dest must never delete src itself
    src_real = src.parent.resolve() / src.name
    dest_real = ctx.output_dir.resolve() / src.name
    if src_real == dest_real:
        logger.debug("%s is already in %s", src, ctx.output_dir)
        return
    if dest_real in src_real.parents:
        raise StepExecutionFailure(step.name, f"{action.path} is inside {dest}")
    if src_real in dest_real.parents:
        raise StepExecutionFailure(step.name, f"{action.path} contains the output directory {ctx.output_dir}")
    try:
        ctx.output_dir.mkdir(parents=True, exist_ok=True)
        if os.path.lexists(dest):
            if dest.is_dir() and not dest.is_symlink():
                shutil.rmtree(dest)
            else:
                dest.unlink()
        shutil.move(str(src), str(dest))
    except OSError as e:
        raise StepExecutionFailure(step.name, str(e)) from e
    logger.debug("moved %s -> %s", src, dest)


def run_step(step: Step, ctx: StepContext) -> None:
    handler = _HANDLERS.get(type(step.action))
    if handler is None:
        raise StepExecutionFailure(step.name, f"no handler for step kind {step.kind!r}")
    logger.info("Running step '%s' (%s)", step.name, step.kind)
    handler(step, ctx)
