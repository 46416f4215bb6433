# blossom/modules/config.py
# -*- coding: utf-8 -*-
"""
Blossom central configuration loader

Features:
- Read YAML (or JSON) config from multiple locations (explicit, env override, cwd, user, system)
- Merge with authoritative DEFAULTS, normalize/coerce types (human sizes to bytes, paths)
- Validate structure and types, warn or error (fatal optional)
- Typed access via Config dataclass (get_config(), dotted get(), section helpers)
- Thread-safe load/reload with watcher callbacks (used by modules.logging for hot reload)
"""

from __future__ import annotations
import os
import json
import logging
import threading
from pathlib import Path
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, List, Tuple, Callable, Union

import yaml

from blossom.modules.errors import ConfigError

# logger (plain stdlib: modules.logging itself depends on this module)
logger = logging.getLogger("blossom.config")

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "file": None,
        "color": True,
        "max_size": "10M",  # human readable
        "backups": 5,
        "format": None,
        "datefmt": "%H:%M:%S",
        "module_levels": {},
    },
    "build": {
        "manifest": "package.toml",
        "download_dir": ".",
        "sources_dir": "sources",
        "output_dir": "pkg",
        "clean_sources": "source",  # never | source | all
        "create_tarball": False,
        "step_timeout": None,
        "env": {},
    },
    "fetcher": {
        "timeout": 60,
        "chunk_size": 64 * 1024,
        "user_agent": "blossom/0.1",
        "progress": True,
    },
    "runners": {
        "shell": {"path": "/bin/sh"},
    },
    "install": {
        "root": "/usr/local",
        "db_dir": "~/.local/share/blossom/installed",
    },
}

CLEAN_POLICIES = ("never", "source", "all")

# ----------------------------
# Dataclass to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # merged with DEFAULTS
    path: Optional[Path] = None

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur

    def as_dict(self) -> Dict[str, Any]:
        return deepcopy(self.merged)

# ----------------------------
# Module state
# ----------------------------
_CONFIG: Optional[Config] = None
_CONFIG_LOCK = threading.RLock()
_WATCH_CALLBACKS: List[Callable[[Config], None]] = []

# ----------------------------
# Utilities
# ----------------------------
def _human_size_to_bytes(val: Union[str, int, None]) -> Optional[int]:
    if val is None:
        return None
    if isinstance(val, int):
        return val
    s = str(val).strip().upper()
    units = {"KB": 1024, "K": 1024, "MB": 1024**2, "M": 1024**2, "GB": 1024**3, "G": 1024**3}
    try:
        for suffix, mul in units.items():
            if s.endswith(suffix):
                num = float(s[: -len(suffix)].strip())
                return int(num * mul)
        return int(float(s))
    except ValueError:
        logger.warning("config: cannot parse human size '%s'", val)
        return None

def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.expanduser(os.path.expandvars(str(val)))

def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res

def _find_candidates(explicit: Optional[str] = None) -> List[Path]:
    candidates: List[Path] = []
    env = os.environ.get("BLOSSOM_CONFIG")
    if explicit:
        candidates.append(Path(explicit))
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path.cwd() / "blossom.yaml",
        Path.cwd() / "blossom.yml",
        Path.home() / ".config" / "blossom" / "config.yaml",
        Path("/etc") / "blossom" / "config.yaml",
    ])
    return candidates

def _load_file(path: Path) -> Dict[str, Any]:
    try:
        txt = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e

    if path.suffix.lower() == ".json":
        try:
            data = json.loads(txt)
        except json.JSONDecodeError as e:
            raise ConfigError(f"invalid JSON in {path}: {e}") from e
    else:
        try:
            data = yaml.safe_load(txt)
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping at top level")
    return data

def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields, convert human sizes and coerce basic types."""
    out = deepcopy(cfg)
    path_keys = [
        ("logging", "file"),
        ("install", "root"),
        ("install", "db_dir"),
        ("runners", "shell", "path"),
    ]
    for keys in path_keys:
        ref = out
        for k in keys[:-1]:
            ref = ref.get(k, {}) if isinstance(ref, dict) else {}
        last = keys[-1]
        if isinstance(ref, dict) and isinstance(ref.get(last), str):
            ref[last] = _expand_path(ref[last])

    # Convert human sizes
    log_cfg = out.get("logging")
    if isinstance(log_cfg, dict) and "max_size" in log_cfg:
        ms = _human_size_to_bytes(log_cfg["max_size"])
        if ms is not None:
            log_cfg["max_size_bytes"] = ms

    # Coerce numbers
    fetch_cfg = out.get("fetcher")
    if isinstance(fetch_cfg, dict):
        try:
            fetch_cfg["timeout"] = float(fetch_cfg.get("timeout") or DEFAULTS["fetcher"]["timeout"])
            fetch_cfg["chunk_size"] = int(fetch_cfg.get("chunk_size") or DEFAULTS["fetcher"]["chunk_size"])
        except (TypeError, ValueError):
            logger.debug("config: failed to coerce fetcher fields", exc_info=True)

    build_cfg = out.get("build")
    if isinstance(build_cfg, dict) and build_cfg.get("step_timeout") is not None:
        try:
            build_cfg["step_timeout"] = float(build_cfg["step_timeout"])
        except (TypeError, ValueError):
            logger.debug("config: failed to coerce build.step_timeout", exc_info=True)

    return out

def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list). Non-fatal warnings unless called with fatal=True in load."""
    warnings: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            warnings.append(f"Unknown top-level config key: {k}")
    for section in DEFAULTS:
        if section in cfg and not isinstance(cfg[section], dict):
            warnings.append(f"{section} must be a mapping")
    build = cfg.get("build") if isinstance(cfg.get("build"), dict) else {}
    if build.get("clean_sources") not in CLEAN_POLICIES:
        warnings.append(f"build.clean_sources must be one of {', '.join(CLEAN_POLICIES)}")
    if not isinstance(build.get("env", {}), dict):
        warnings.append("build.env must be a mapping")
    fetcher = cfg.get("fetcher") if isinstance(cfg.get("fetcher"), dict) else {}
    timeout = fetcher.get("timeout")
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        warnings.append("fetcher.timeout must be a positive number")
    chunk = fetcher.get("chunk_size")
    if not isinstance(chunk, int) or chunk < 1:
        warnings.append("fetcher.chunk_size must be integer >= 1")
    return (len(warnings) == 0, warnings)

# ----------------------------
# Loading / reloading
# ----------------------------
def _find_path(explicit: Optional[str] = None) -> Optional[Path]:
    if explicit and not Path(explicit).exists():
        raise ConfigError(f"config file not found: {explicit}")
    for p in _find_candidates(explicit):
        if p.exists():
            return p
    return None

def load(explicit_path: Optional[str] = None, fatal: bool = False) -> Config:
    """
    Load and merge config. If fatal=True then structural validation failures raise.
    Returns Config object.
    """
    global _CONFIG
    with _CONFIG_LOCK:
        cfg_path = _find_path(explicit_path)
        raw: Dict[str, Any] = _load_file(cfg_path) if cfg_path else {}
        merged = _deep_merge(DEFAULTS, raw)
        normalized = _normalize_and_coerce(merged)
        ok, issues = _validate_structure(normalized)
        if not ok:
            msg = f"config: validation issues: {issues}"
            if fatal:
                logger.error(msg)
                raise ConfigError(msg)
            logger.warning(msg)
        cfg_obj = Config(raw=raw, merged=normalized, path=cfg_path)
        _CONFIG = cfg_obj
        logger.debug("config: loaded merged config (from=%s)", str(cfg_path) if cfg_path else "<defaults>")
        return cfg_obj

def get_config() -> Config:
    with _CONFIG_LOCK:
        if _CONFIG is None:
            return load()
        return _CONFIG

def reload(explicit_path: Optional[str] = None) -> Config:
    cfg = load(explicit_path)
    _notify_watchers(cfg)
    return cfg

# ----------------------------
# Watcher API
# ----------------------------
def register_watch_callback(cb: Callable[[Config], None]) -> None:
    with _CONFIG_LOCK:
        if cb not in _WATCH_CALLBACKS:
            _WATCH_CALLBACKS.append(cb)

def unregister_watch_callback(cb: Callable[[Config], None]) -> None:
    with _CONFIG_LOCK:
        if cb in _WATCH_CALLBACKS:
            _WATCH_CALLBACKS.remove(cb)

def _notify_watchers(cfg: Config) -> None:
    with _CONFIG_LOCK:
        cbs = list(_WATCH_CALLBACKS)
    for cb in cbs:
        cb(cfg)

# ----------------------------
# Convenience helpers for modules
# ----------------------------
def get_build_config() -> Dict[str, Any]:
    return deepcopy(get_config().merged.get("build", {}))

def get_fetcher_config() -> Dict[str, Any]:
    return deepcopy(get_config().merged.get("fetcher", {}))

def get_install_config() -> Dict[str, Any]:
    return deepcopy(get_config().merged.get("install", {}))

def get_runner_config(name: str) -> Dict[str, Any]:
    val = get_config().merged.get("runners", {}).get(name)
    return deepcopy(val) if isinstance(val, dict) else {}

def validate_config() -> Tuple[bool, List[str]]:
    ok, issues = _validate_structure(get_config().merged)
    # extra checks: install db dir creatable
    db_dir = get_config().get("install.db_dir")
    if db_dir:
        try:
            Path(db_dir).mkdir(parents=True, exist_ok=True)
        except OSError:
            issues.append(f"install.db_dir {db_dir} not creatable")
    return (len(issues) == 0, issues)

# ----------------------------
# CLI for inspection
# ----------------------------
if __name__ == "__main__":
    import argparse
    ap = argparse.ArgumentParser(prog="blossom-config", description="Inspect/validate blossom config")
    ap.add_argument("--print", action="store_true", help="print merged config")
    ap.add_argument("--raw", action="store_true", help="print raw file config only (if file exists)")
    ap.add_argument("--validate", action="store_true", help="validate config and list issues")
    ap.add_argument("--path", help="explicit config path to load")
    args = ap.parse_args()
    cfg = load(args.path) if args.path else get_config()
    if args.raw:
        print(json.dumps(cfg.raw, indent=2, ensure_ascii=False))
    if args.print:
        print(json.dumps(cfg.merged, indent=2, ensure_ascii=False, default=str))
    if args.validate:
        ok, issues = validate_config()
        print("OK:", ok)
        for it in issues:
            print(" -", it)
