# blossom/modules/buildsystem.py
# -*- coding: utf-8 -*-
"""
buildsystem.py - Blossom build orchestrator

API:
  bs = get_buildsystem()
  result = bs.build()            # BuildResult

Stages (strictly in this order, fail-fast):
  load_manifest -> fetch_sources -> extract_sources -> run_steps [-> package] -> done
Any failure moves the build to "failed" and records the stage it happened in.
Nothing is retried or rolled back; re-running relies on the fetcher's cache check.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from blossom.modules.config import get_build_config
from blossom.modules.errors import BlossomError
from blossom.modules.extractor import clean_all, extract_source
from blossom.modules.fetcher import FetcherManager
from blossom.modules.logging import get_logger
from blossom.modules.meta import Dependencies, Package, find_manifest, load_manifest
from blossom.modules.pkgtool import create_tarball
from blossom.modules.steps import make_context, run_step

logger = get_logger("buildsystem")


class BuildStage(str, Enum):
    LOAD_MANIFEST = "load_manifest"
    FETCH_SOURCES = "fetch_sources"
    EXTRACT_SOURCES = "extract_sources"
    RUN_STEPS = "run_steps"
    PACKAGE = "package"
    DONE = "done"
    FAILED = "failed"


@dataclass
class BuildResult:
    ok: bool
    state: BuildStage
    failed_stage: Optional[BuildStage] = None
    error: Optional[BaseException] = None
    package: Optional[Package] = None
    fetched: List[Path] = field(default_factory=list)
    tarball: Optional[Path] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "state": self.state.value,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "error": str(self.error) if self.error else None,
            "package": f"{self.package.info.name}-{self.package.info.version}" if self.package else None,
            "fetched": [str(p) for p in self.fetched],
            "tarball": str(self.tarball) if self.tarball else None,
        }


def resolve_dependencies(deps: Optional[Dependencies]) -> List[str]:
    """Dependencies are declared data only; nothing is resolved or installed."""
    if deps is not None:
        logger.debug("declared dependencies: required=%s optional=%s build=%s",
                     list(deps.required), list(deps.optional), list(deps.build))
    return []


class BuildSystem:
    def __init__(self, workdir: Optional[Union[str, Path]] = None, session=None, progress=None,
                 cancel_event: Optional[threading.Event] = None):
        self.workdir = Path(workdir) if workdir is not None else Path.cwd()
        self.cancel_event = cancel_event
        cfg = get_build_config()
        self.sources_dir = self.workdir / cfg.get("sources_dir", "sources")
        self.clean_policy = cfg.get("clean_sources", "source")
        self.make_tarball = bool(cfg.get("create_tarball", False))
        download_dir = Path(cfg.get("download_dir", "."))
        self.fetcher = FetcherManager(
            download_dir=download_dir if download_dir.is_absolute() else self.workdir / download_dir,
            session=session,
            progress=progress,
        )

    # -------------------------
    # stages
    # -------------------------
    def load(self) -> Package:
        return load_manifest(find_manifest(self.workdir))

    def fetch(self, package: Package) -> List[Path]:
        fetched = []
        for source in package.sources:
            fetched.append(self.fetcher.fetch_source(source, package.info, cancel_event=self.cancel_event))
        return fetched

    def extract(self, archives: List[Path]) -> None:
        for archive in archives:
            extract_source(archive, self.sources_dir, clean=self.clean_policy)

    def run_steps(self, package: Package) -> None:
        ctx = make_context(package, self.workdir, self.sources_dir)
        for step in package.steps:
            run_step(step, ctx)
        logger.info("All %d steps completed", len(package.steps))

    def package(self, package: Package) -> Path:
        ctx = make_context(package, self.workdir, self.sources_dir)
        return create_tarball(ctx.output_dir, package.info, self.workdir)

    # -------------------------
    # orchestration
    # -------------------------
    def build(self) -> BuildResult:
        result = BuildResult(ok=False, state=BuildStage.LOAD_MANIFEST)
        try:
            package = self.load()
            result.package = package
            logger.info("Building package %s version %s", package.info.name, package.info.version)
            resolve_dependencies(package.dependencies)

            result.state = BuildStage.FETCH_SOURCES
            if self.clean_policy == "all":
                clean_all(self.sources_dir)
            result.fetched = self.fetch(package)

            result.state = BuildStage.EXTRACT_SOURCES
            self.extract(result.fetched)

            result.state = BuildStage.RUN_STEPS
            self.run_steps(package)

            if self.make_tarball:
                result.state = BuildStage.PACKAGE
                result.tarball = self.package(package)
        except (BlossomError, OSError) as e:
            logger.error("Build failed during %s: %s", result.state.value, e)
            result.failed_stage = result.state
            result.state = BuildStage.FAILED
            result.error = e
            return result

        result.state = BuildStage.DONE
        result.ok = True
        logger.info("Package %s %s built successfully", package.info.name, package.info.version)
        return result

# -----------------------------------------------------------------------
# module-level manager & wrappers
# -----------------------------------------------------------------------
_MANAGER_LOCK = threading.RLock()
_MANAGER: Optional[BuildSystem] = None

def get_buildsystem() -> BuildSystem:
    global _MANAGER
    with _MANAGER_LOCK:
        if _MANAGER is None:
            _MANAGER = BuildSystem()
        return _MANAGER

def build_package(workdir: Optional[Union[str, Path]] = None, **kwargs) -> BuildResult:
    """One-shot build in workdir (default: current directory)."""
    return BuildSystem(workdir=workdir, **kwargs).build()
