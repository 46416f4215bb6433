# tests/conftest.py
"""Shared fixtures: isolated config, manifest data, fake HTTP session and archive builders.

No network access: every download goes through FakeSession.
"""

from __future__ import annotations

import hashlib
import io
import tarfile
from pathlib import Path
from typing import Dict, Optional

import pytest
import requests
import yaml

from blossom.modules import buildsystem, config, fetcher, pkgtool
from blossom.modules.meta import Info


# === Helpers ===


def sha256_of(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


def make_tar_bytes(files: Dict[str, bytes], mode: str = "w:gz") -> bytes:
    """Build a compressed tar archive in memory from {member name: content}."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=mode) as tar:
        for name, content in files.items():
            ti = tarfile.TarInfo(name)
            ti.size = len(content)
            ti.mode = 0o644
            tar.addfile(ti, io.BytesIO(content))
    return buf.getvalue()


def write_tar(path: Path, files: Dict[str, bytes], mode: Optional[str] = None) -> Path:
    if mode is None:
        mode = {".gz": "w:gz", ".xz": "w:xz", ".bz2": "w:bz2"}[path.suffix]
    path.write_bytes(make_tar_bytes(files, mode))
    return path


class FakeResponse:
    """Streaming response with the subset of requests.Response the fetcher uses."""

    def __init__(self, body: bytes = b"", status: int = 200, headers: Optional[Dict[str, str]] = None):
        self.body = body
        self.status_code = status
        self.headers = {"Content-Length": str(len(body))} if headers is None else headers
        self.closed = False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error", response=self)

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.body), chunk_size):
            yield self.body[i:i + chunk_size]

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class FakeSession:
    """Maps URL -> FakeResponse (or an exception to raise) and records every GET."""

    def __init__(self, routes: Optional[Dict[str, object]] = None):
        self.routes = dict(routes or {})
        self.calls = []

    def get(self, url, stream=False, timeout=None, headers=None):
        self.calls.append({"url": url, "stream": stream, "timeout": timeout})
        route = self.routes.get(url)
        if route is None:
            raise requests.ConnectionError(f"no route for {url}")
        if isinstance(route, Exception):
            raise route
        return route


class RecordingProgress:
    def __init__(self):
        self.started = []
        self.advanced = 0
        self.finished = 0

    def start(self, description, total):
        self.started.append((description, total))

    def advance(self, amount):
        self.advanced += amount

    def finish(self):
        self.finished += 1


# === FIXTURES: configuration ===


@pytest.fixture(autouse=True)
def blossom_config(tmp_path, monkeypatch):
    """Point the config loader at a per-test YAML file and reset module singletons."""
    cfg_file = tmp_path / "blossom-test.yaml"
    cfg_file.write_text(yaml.safe_dump({
        "logging": {"level": "INFO", "color": False},
        "fetcher": {"progress": False, "timeout": 5},
        "install": {"root": str(tmp_path / "root"), "db_dir": str(tmp_path / "db")},
    }))
    monkeypatch.setenv("BLOSSOM_CONFIG", str(cfg_file))
    monkeypatch.setattr(pkgtool, "_MANAGER", None)
    monkeypatch.setattr(fetcher, "_MANAGER", None)
    monkeypatch.setattr(buildsystem, "_MANAGER", None)
    config.reload()
    return cfg_file


@pytest.fixture
def write_config(blossom_config):
    """Merge extra settings into the test config file and reload."""
    def _write(extra: Dict[str, dict]):
        data = yaml.safe_load(blossom_config.read_text())
        for section, values in extra.items():
            data.setdefault(section, {}).update(values)
        blossom_config.write_text(yaml.safe_dump(data))
        return config.reload()
    return _write


# === FIXTURES: sample data ===


@pytest.fixture
def info() -> Info:
    return Info(name="hello", version="1.2.3", description="GNU hello", license="GPL-3.0-or-later")


@pytest.fixture
def fixture_archive() -> bytes:
    return make_tar_bytes({
        "hello-1.2.3/README": b"hello world\n",
        "hello-1.2.3/src/main.c": b"int main(void) { return 0; }\n",
    })


@pytest.fixture
def workdir(tmp_path, monkeypatch) -> Path:
    wd = tmp_path / "work"
    wd.mkdir()
    monkeypatch.chdir(wd)
    return wd


MANIFEST_TEMPLATE = """\
[info]
name = "hello"
version = "1.2.3"
description = "GNU hello"
license = "GPL-3.0-or-later"

[[sources]]
url = "https://example.test/pkg-%{{version}}.tar.gz"
checksum = "{checksum}"

{steps}
"""


@pytest.fixture
def write_manifest(workdir):
    def _write(checksum: str, steps: str = "", extra: str = "") -> Path:
        path = workdir / "package.toml"
        path.write_text(MANIFEST_TEMPLATE.format(checksum=checksum, steps=steps) + extra)
        return path
    return _write
