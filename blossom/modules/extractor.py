# blossom/modules/extractor.py
"""
extractor.py - unpack fetched source archives into the sources directory

Features:
- Decoder chosen by file extension only: .xz (lzma), .gz (gzip), .bz2 (bzip2)
- Every decoder feeds a streaming tar reader; tar's overwrite behaviour applies (last entry wins)
- Traversal-safe extraction through the stdlib tar filter
- Per-archive record of produced top-level entries (sources/.blossom/<archive>.json)
  so the "source" clean policy can remove exactly what an archive produced last time
"""

from __future__ import annotations

import bz2
import gzip
import json
import lzma
import os
import shutil
import tarfile
import zlib
from pathlib import Path
from typing import Callable, Dict, IO, Iterator, List, Optional, Set, Union

from blossom.modules.config import CLEAN_POLICIES, get_build_config
from blossom.modules.errors import ExtractionFailure, UnsupportedArchiveFormat
from blossom.modules.logging import get_logger

logger = get_logger("extractor")

RECORD_DIR = ".blossom"

DECODERS: Dict[str, Callable[..., IO[bytes]]] = {
    ".xz": lzma.open,
    ".gz": gzip.open,
    ".bz2": bz2.open,
}

# errors a decoder or the tar reader may raise on corrupt input
_READ_ERRORS = (tarfile.TarError, OSError, EOFError, lzma.LZMAError, zlib.error)


def select_decoder(path: Union[str, Path]) -> Callable[..., IO[bytes]]:
    suffix = Path(path).suffix.lower()
    decoder = DECODERS.get(suffix)
    if decoder is None:
        raise UnsupportedArchiveFormat(Path(path).name)
    return decoder


def _top_level(name: str) -> Optional[str]:
    parts = [p for p in name.replace("\\", "/").split("/") if p not in ("", ".")]
    return parts[0] if parts else None

# ----------------------------
# clean records
# ----------------------------
def _record_path(sources_dir: Path, archive: Path) -> Path:
    return sources_dir / RECORD_DIR / f"{archive.name}.json"


def read_record(sources_dir: Union[str, Path], archive: Union[str, Path]) -> List[str]:
    p = _record_path(Path(sources_dir), Path(archive))
    if not p.is_file():
        return []
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable extraction record %s: %s", p, e)
        return []
    if not isinstance(data, dict):
        return []
    return [e for e in data.get("entries", []) if isinstance(e, str)]


def _write_record(sources_dir: Path, archive: Path, entries: List[str]) -> None:
    p = _record_path(sources_dir, archive)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps({"archive": archive.name, "entries": entries}, indent=2), encoding="utf-8")


def _remove_entry(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def clean_previous(sources_dir: Union[str, Path], archive: Union[str, Path]) -> List[str]:
    """Remove the top-level entries the same archive produced last time."""
    sources_dir = Path(sources_dir)
    base = sources_dir.resolve()
    removed = []
    for entry in read_record(sources_dir, archive):
        target = sources_dir / entry
        if Path(os.path.normpath(base / entry)).parent != base:
            logger.warning("Skipping recorded entry outside %s: %s", sources_dir, entry)
            continue
        if target.exists() or target.is_symlink():
            _remove_entry(target)
            removed.append(entry)
    if removed:
        logger.debug("Removed previous extraction of %s: %s", Path(archive).name, removed)
    return removed


def clean_all(sources_dir: Union[str, Path]) -> None:
    sources_dir = Path(sources_dir)
    if sources_dir.exists():
        logger.info("Removing %s", sources_dir)
        shutil.rmtree(sources_dir)

# ----------------------------
# extraction
# ----------------------------
def _tracked(tar: tarfile.TarFile, seen: Set[str]) -> Iterator[tarfile.TarInfo]:
    for member in tar:
        top = _top_level(member.name)
        if top is not None:
            seen.add(top)
        yield member


def extract_source(archive: Union[str, Path], sources_dir: Optional[Union[str, Path]] = None,
                   clean: Optional[str] = None) -> List[str]:
    """
    Unpack archive into sources_dir and return the top-level entries it produced.

    Raises UnsupportedArchiveFormat for unknown extensions and ExtractionFailure
    when the archive cannot be decoded. A failure may leave partial output on disk.
    """
    archive = Path(archive)
    build_cfg = get_build_config()
    sources_dir = Path(sources_dir if sources_dir is not None else build_cfg.get("sources_dir", "sources"))
    clean = clean or build_cfg.get("clean_sources", "source")
    if clean not in CLEAN_POLICIES:
        raise ValueError(f"unknown clean policy {clean!r}")

    decoder = select_decoder(archive)
    if not archive.is_file():
        raise ExtractionFailure(f"archive {archive} does not exist")

    if clean == "source":
        clean_previous(sources_dir, archive)
    sources_dir.mkdir(parents=True, exist_ok=True)

    logger.info("Extracting %s into %s", archive.name, sources_dir)
    seen: Set[str] = set()
    try:
        with decoder(archive, "rb") as stream:
            with tarfile.open(fileobj=stream, mode="r|") as tar:
                members = _tracked(tar, seen)
                if hasattr(tarfile, "tar_filter"):
                    tar.extractall(path=sources_dir, members=members, filter="tar")
                else:
                    tar.extractall(path=sources_dir, members=members)
    except _READ_ERRORS as e:
        raise ExtractionFailure(f"failed to extract {archive.name}: {e}") from e

    entries = sorted(seen - {RECORD_DIR})
    _write_record(sources_dir, archive, entries)
    logger.info("Source extracted successfully.")
    return entries
