# blossom/modules/meta.py
"""
meta.py - package manifest (package.toml) model and loader

Features:
- Typed, immutable model: Package, Info, Dependencies, Source, Step
- TOML parsing via the toml package; serialization back to TOML
- SPDX license expression validation (license-expression)
- Checksum shape/algorithm checks and runner name checks at load time
- Step variants (command, move) resolved by a single ordered registry of
  required keys; new variants register without touching existing ones
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import toml
from license_expression import ExpressionError, get_spdx_licensing

from blossom.modules.checksum import parse_checksum
from blossom.modules.config import get_build_config
from blossom.modules.errors import (
    InvalidLicenseExpression,
    ManifestNotFound,
    ManifestParseError,
    UnknownRunner,
)
from blossom.modules.logging import get_logger
from blossom.modules.runners import is_known_runner

logger = get_logger("meta")

_LICENSING = get_spdx_licensing()

# -----------------------
# Data models
# -----------------------
@dataclass(frozen=True)
class Info:
    name: str
    version: str
    description: str = ""
    license: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "version": self.version, "description": self.description, "license": self.license}


@dataclass(frozen=True)
class Dependencies:
    required: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()
    build: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"required": list(self.required), "optional": list(self.optional), "build": list(self.build)}


@dataclass(frozen=True)
class Source:
    url: str
    checksum: str

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "checksum": self.checksum}


@dataclass(frozen=True)
class CommandAction:
    runner: str
    command: str

    def to_dict(self) -> Dict[str, Any]:
        return {"runner": self.runner, "command": self.command}


@dataclass(frozen=True)
class MoveAction:
    path: str

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path}


@dataclass(frozen=True)
class Step:
    name: str
    action: Any  # one of the registered action types

    @property
    def kind(self) -> str:
        for variant in STEP_VARIANTS:
            if isinstance(self.action, variant.action_type):
                return variant.kind
        return type(self.action).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, **self.action.to_dict()}


@dataclass(frozen=True)
class Package:
    info: Info
    dependencies: Optional[Dependencies] = None
    sources: Tuple[Source, ...] = ()
    steps: Tuple[Step, ...] = ()
    directories: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"info": self.info.to_dict()}
        if self.dependencies is not None:
            out["dependencies"] = self.dependencies.to_dict()
        out["sources"] = [s.to_dict() for s in self.sources]
        out["steps"] = [s.to_dict() for s in self.steps]
        out["directories"] = dict(self.directories)
        return out

# -----------------------
# Step variant registry
# -----------------------
@dataclass(frozen=True)
class StepVariant:
    kind: str
    required: Tuple[str, ...]
    action_type: type
    parse: Callable[[str, Dict[str, Any]], Any]


def _parse_command(step_name: str, raw: Dict[str, Any]) -> CommandAction:
    runner = _require_str(raw, "runner", f"step '{step_name}'")
    command = _require_str(raw, "command", f"step '{step_name}'")
    if not is_known_runner(runner):
        raise UnknownRunner(runner)
    return CommandAction(runner=runner, command=command)


def _parse_move(step_name: str, raw: Dict[str, Any]) -> MoveAction:
    return MoveAction(path=_require_str(raw, "path", f"step '{step_name}'"))


# first variant whose required keys are all present wins
STEP_VARIANTS: List[StepVariant] = [
    StepVariant("command", ("runner", "command"), CommandAction, _parse_command),
    StepVariant("move", ("path",), MoveAction, _parse_move),
]


def register_step_variant(kind: str, required: Tuple[str, ...], action_type: type,
                          parse: Callable[[str, Dict[str, Any]], Any]) -> None:
    """Append a step variant; it is tried after all previously registered ones."""
    if any(v.kind == kind for v in STEP_VARIANTS):
        raise ValueError(f"step variant {kind!r} already registered")
    STEP_VARIANTS.append(StepVariant(kind, tuple(required), action_type, parse))

# -----------------------
# parsing helpers
# -----------------------
def _require_str(raw: Dict[str, Any], key: str, where: str) -> str:
    val = raw.get(key)
    if not isinstance(val, str):
        raise ManifestParseError(f"{where}: '{key}' must be a string")
    return val


def _str_list(raw: Dict[str, Any], key: str, where: str) -> Tuple[str, ...]:
    val = raw.get(key, [])
    if not isinstance(val, list) or not all(isinstance(v, str) for v in val):
        raise ManifestParseError(f"{where}: '{key}' must be a list of strings")
    return tuple(val)


def _table_list(data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    val = data.get(key, [])
    if not isinstance(val, list) or not all(isinstance(v, dict) for v in val):
        raise ManifestParseError(f"'{key}' must be an array of tables")
    return val


def validate_license(expression: str) -> str:
    """Return the normalized SPDX expression or raise InvalidLicenseExpression."""
    if not expression or not expression.strip():
        raise InvalidLicenseExpression(expression, "empty expression")
    try:
        parsed = _LICENSING.parse(expression, validate=True, strict=True)
    except ExpressionError as e:
        raise InvalidLicenseExpression(expression, str(e)) from e
    if parsed is None:
        raise InvalidLicenseExpression(expression, "empty expression")
    return str(parsed)


def parse_info(raw: Any) -> Info:
    if not isinstance(raw, dict):
        raise ManifestParseError("missing [info] table")
    name = _require_str(raw, "name", "info")
    if not name.strip():
        raise ManifestParseError("info: 'name' must not be empty")
    version = raw.get("version")
    if isinstance(version, (int, float)) and not isinstance(version, bool):
        version = str(version)
    if not isinstance(version, str):
        raise ManifestParseError("info: 'version' must be a string")
    description = _require_str(raw, "description", "info")
    license_expr = validate_license(_require_str(raw, "license", "info"))
    return Info(name=name, version=version, description=description, license=license_expr)


def parse_dependencies(raw: Any) -> Optional[Dependencies]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ManifestParseError("'dependencies' must be a table")
    return Dependencies(
        required=_str_list(raw, "required", "dependencies"),
        optional=_str_list(raw, "optional", "dependencies"),
        build=_str_list(raw, "build", "dependencies"),
    )


def parse_source(raw: Dict[str, Any], index: int) -> Source:
    where = f"sources[{index}]"
    url = _require_str(raw, "url", where)
    checksum = _require_str(raw, "checksum", where)
    # shape and algorithm are rejected here, before anything touches the network
    parse_checksum(checksum)
    return Source(url=url, checksum=checksum)


def parse_step(raw: Dict[str, Any], index: int) -> Step:
    name = _require_str(raw, "name", f"steps[{index}]")
    for variant in STEP_VARIANTS:
        if all(k in raw for k in variant.required):
            return Step(name=name, action=variant.parse(name, raw))
    kinds = ", ".join(f"{v.kind} ({'+'.join(v.required)})" for v in STEP_VARIANTS)
    raise ManifestParseError(f"step '{name}' matches no step kind; expected one of: {kinds}")


def parse_directories(raw: Any) -> Dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict) or not all(isinstance(v, str) for v in raw.values()):
        raise ManifestParseError("'directories' must be a table of strings")
    return {str(k): v for k, v in raw.items()}


def parse_manifest(data: Dict[str, Any]) -> Package:
    if not isinstance(data, dict):
        raise ManifestParseError("manifest must be a table")
    return Package(
        info=parse_info(data.get("info")),
        dependencies=parse_dependencies(data.get("dependencies")),
        sources=tuple(parse_source(s, i) for i, s in enumerate(_table_list(data, "sources"))),
        steps=tuple(parse_step(s, i) for i, s in enumerate(_table_list(data, "steps"))),
        directories=parse_directories(data.get("directories")),
    )


def loads_manifest(text: str) -> Package:
    try:
        data = toml.loads(text)
    except toml.TomlDecodeError as e:
        raise ManifestParseError(f"invalid TOML: {e}") from e
    return parse_manifest(data)


def dumps_manifest(package: Package) -> str:
    return toml.dumps(package.to_dict())


def find_manifest(workdir: Optional[Union[str, Path]] = None) -> Path:
    base = Path(workdir) if workdir else Path.cwd()
    path = base / get_build_config().get("manifest", "package.toml")
    if not path.is_file():
        raise ManifestNotFound(path.name)
    return path


def load_manifest(path: Union[str, Path]) -> Package:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ManifestNotFound(path.name) from e
    except OSError as e:
        raise ManifestParseError(f"cannot read {path}: {e}") from e
    try:
        package = loads_manifest(text)
    except ManifestParseError as e:
        logger.debug("manifest %s rejected: %s", path, e)
        raise
    logger.debug("loaded manifest %s: %s %s (%d sources, %d steps)", path, package.info.name,
                 package.info.version, len(package.sources), len(package.steps))
    return package
