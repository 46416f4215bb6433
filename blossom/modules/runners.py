# blossom/modules/runners.py
"""
runners.py - execution strategies for command steps

A runner turns a step's command string into a process invocation. Runners
register themselves by name; manifests refer to them by that name and an
unknown name is rejected when the manifest is parsed.
"""

from __future__ import annotations

import os
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Type, Union

from blossom.modules.config import get_runner_config
from blossom.modules.errors import UnknownRunner
from blossom.modules.logging import get_logger

logger = get_logger("runners")

# ----------------------------
# Runner interface
# ----------------------------
class Runner(ABC):
    name: str = ""

    @abstractmethod
    def build_argv(self, command: str) -> List[str]:
        """Return the argv used to execute command."""

    def run(self, command: str, cwd: Optional[Union[str, Path]] = None, env: Optional[Dict[str, str]] = None,
            timeout: Optional[float] = None) -> int:
        """Run synchronously; returns the exit code (124 on timeout)."""
        argv = self.build_argv(command)
        logger.debug("RUN: %s (cwd=%s)", argv, str(cwd) if cwd else None)
        proc = subprocess.Popen(argv, cwd=str(cwd) if cwd else None, env=env)
        try:
            return proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
            logger.error("command timed out after %ss: %s", timeout, command)
            return 124


class ShellRunner(Runner):
    name = "shell"

    def __init__(self, shell: Optional[str] = None):
        self.shell = shell or get_runner_config("shell").get("path") or "/bin/sh"

    def build_argv(self, command: str) -> List[str]:
        return [self.shell, "-c", command]

# ----------------------------
# Registry
# ----------------------------
_RUNNERS: Dict[str, Type[Runner]] = {}

def register_runner(cls: Type[Runner]) -> Type[Runner]:
    if not cls.name:
        raise ValueError(f"runner class {cls.__name__} has no name")
    _RUNNERS[cls.name] = cls
    return cls

register_runner(ShellRunner)

def is_known_runner(name: str) -> bool:
    return name in _RUNNERS

def available_runners() -> List[str]:
    return sorted(_RUNNERS)

def get_runner(name: str) -> Runner:
    cls = _RUNNERS.get(name)
    if cls is None:
        raise UnknownRunner(name)
    return cls()


def base_env(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    env = dict(os.environ)
    if extra:
        env.update({str(k): str(v) for k, v in extra.items()})
    return env
