# blossom/modules/pkgtool.py
# -*- coding: utf-8 -*-
"""
pkgtool.py - binary package (.peach) creation, installation and removal

Features:
- create_tarball: pack a build output directory into <name>_<version>.peach (tar+gzip)
- install: unpack a .peach under the install root with a traversal-safe tar filter
  and record every installed file (with sha256) in install.db_dir/<name>.json
- uninstall: remove the recorded files, prune directories left empty, drop the record
- info: return the installed record for a package name, or None

API:
  pt = get_pkgtool()
  pt.create_tarball(output_dir, info, dest_dir) -> Path
  pt.install(tarball, root=None) -> dict
  pt.uninstall(name) -> dict
  pt.info(name) -> Optional[dict]
"""

from __future__ import annotations

import hashlib
import json
import os
import tarfile
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from blossom.modules.config import get_install_config
from blossom.modules.errors import InstallError, PackageNotInstalled
from blossom.modules.logging import get_logger
from blossom.modules.meta import Info

logger = get_logger("pkgtool")

PACKAGE_SUFFIX = ".peach"

# ----------------------------
# Helpers
# ----------------------------
def tarball_name(info: Info) -> str:
    return f"{info.name}_{info.version}{PACKAGE_SUFFIX}"


def parse_tarball_name(path: Union[str, Path]) -> Dict[str, str]:
    """'<name>_<version>.peach' -> {"name", "version"}; the last '_' separates them."""
    fname = Path(path).name
    if not fname.endswith(PACKAGE_SUFFIX):
        raise InstallError(f"{fname} is not a {PACKAGE_SUFFIX} package")
    stem = fname[: -len(PACKAGE_SUFFIX)]
    name, sep, version = stem.rpartition("_")
    if not sep or not name or not version:
        raise InstallError(f"cannot read name and version from {fname} (expected <name>_<version>{PACKAGE_SUFFIX})")
    return {"name": name, "version": version}


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def _tar_filter_kwargs(name: str) -> Dict[str, Any]:
    return {"filter": name} if hasattr(tarfile, "data_filter") else {}


def _member_path(name: str) -> str:
    """Archive member name as a normalized path relative to the install root."""
    rel = os.path.normpath(name.lstrip("/"))
    if rel == ".." or rel.startswith("../") or os.path.isabs(rel):
        raise InstallError(f"package member {name!r} points outside the install root")
    return rel


def _inside(root: Path, path: Path) -> bool:
    root = Path(os.path.normpath(root))
    return root in Path(os.path.normpath(path)).parents

# ----------------------------
# PkgTool
# ----------------------------
class PkgTool:
    def __init__(self, db_dir: Optional[Union[str, Path]] = None, root: Optional[Union[str, Path]] = None):
        cfg = get_install_config()
        self.db_dir = Path(db_dir if db_dir is not None else cfg.get("db_dir")).expanduser()
        self.root = Path(root if root is not None else cfg.get("root", "/usr/local")).expanduser()

    def _record_path(self, name: str) -> Path:
        return self.db_dir / f"{name}.json"

    # -------------------------
    # create
    # -------------------------
    def create_tarball(self, output_dir: Union[str, Path], info: Info, dest_dir: Union[str, Path]) -> Path:
        output_dir = Path(output_dir)
        if not output_dir.is_dir():
            raise InstallError(f"output directory {output_dir} does not exist")
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        out = dest_dir / tarball_name(info)
        with tarfile.open(out, "w:gz") as tar:
            tar.add(str(output_dir), arcname=".")
        logger.info("Created tarball: %s", out.name)
        return out

    # -------------------------
    # install
    # -------------------------
    def install(self, tarball: Union[str, Path], root: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
        tarball = Path(tarball)
        if not tarball.is_file():
            raise InstallError(f"package file {tarball} does not exist")
        meta = parse_tarball_name(tarball)
        dest = Path(root).expanduser() if root is not None else self.root
        dest.mkdir(parents=True, exist_ok=True)

        try:
            with tarfile.open(tarball, "r:gz") as tar:
                members = tar.getmembers()
                # extract and record under the same root-relative names
                for m in members:
                    m.name = _member_path(m.name)
                tar.extractall(path=dest, members=members, **_tar_filter_kwargs("data"))
        except (tarfile.TarError, OSError, EOFError) as e:
            raise InstallError(f"failed to install {tarball.name}: {e}") from e

        files: List[Dict[str, Any]] = []
        for m in members:
            if m.isdir():
                continue
            rel = m.name
            target = dest / rel
            entry: Dict[str, Any] = {"path": rel}
            if target.is_file() and not target.is_symlink():
                entry["sha256"] = _sha256_file(target)
            files.append(entry)

        record = {
            "name": meta["name"],
            "version": meta["version"],
            "package": str(tarball.resolve()),
            "root": str(dest.resolve()),
            "installed_at": int(time.time()),
            "files": files,
        }
        self.db_dir.mkdir(parents=True, exist_ok=True)
        self._record_path(meta["name"]).write_text(json.dumps(record, indent=2), encoding="utf-8")
        logger.info("Installed package from %s", tarball)
        return {"ok": True, "name": meta["name"], "version": meta["version"], "files": len(files)}

    # -------------------------
    # uninstall / info
    # -------------------------
    def info(self, name: str) -> Optional[Dict[str, Any]]:
        p = self._record_path(name)
        if not p.is_file():
            return None
        try:
            return json.loads(p.read_text(encoding="utf-8"))
        except ValueError as e:
            raise InstallError(f"install record {p} is corrupt: {e}") from e

    def uninstall(self, name: str) -> Dict[str, Any]:
        record = self.info(name)
        if record is None:
            raise PackageNotInstalled(name)
        root = Path(record["root"])
        removed = 0
        parents = set()
        for f in record.get("files", []):
            p = root / f["path"]
            if not _inside(root, p):
                logger.warning("Skipping recorded file outside %s: %s", root, f["path"])
                continue
            if os.path.lexists(p):
                p.unlink()
                removed += 1
            parents.add(p.parent)
        # deepest first so nested empty directories collapse
        for d in sorted(parents, key=lambda x: len(x.parts), reverse=True):
            while d != root and root in d.parents:
                try:
                    d.rmdir()
                except OSError:
                    break
                d = d.parent
        self._record_path(name).unlink()
        logger.info("Uninstalled %s %s (%d files)", name, record.get("version"), removed)
        return {"ok": True, "name": name, "removed": removed}

# ----------------------------
# module-level manager & wrappers
# ----------------------------
_MANAGER_LOCK = threading.RLock()
_MANAGER: Optional[PkgTool] = None

def get_pkgtool() -> PkgTool:
    global _MANAGER
    with _MANAGER_LOCK:
        if _MANAGER is None:
            _MANAGER = PkgTool()
        return _MANAGER

def create_tarball(*a, **k): return get_pkgtool().create_tarball(*a, **k)
def install(*a, **k): return get_pkgtool().install(*a, **k)
def uninstall(*a, **k): return get_pkgtool().uninstall(*a, **k)
def info(*a, **k): return get_pkgtool().info(*a, **k)
