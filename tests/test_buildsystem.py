# tests/test_buildsystem.py
"""Tests for modules.buildsystem: the build state machine, end to end against a fake HTTP layer."""

from __future__ import annotations

import tarfile
import threading
from unittest.mock import patch

from blossom.modules.buildsystem import BuildStage, BuildSystem, build_package
from blossom.modules.errors import (
    ChecksumMismatch,
    ManifestNotFound,
    NetworkError,
    StepExecutionFailure,
    UnknownRunner,
)
from blossom.modules.fetcher import NullProgress
from tests.conftest import FakeResponse, FakeSession, sha256_of

URL = "https://example.test/pkg-1.2.3.tar.gz"

BUILD_STEP = """
[[steps]]
name = "build"
runner = "shell"
command = "true"
"""

THREE_STEPS = """
[[steps]]
name = "first"
runner = "shell"
command = "touch first.done"

[[steps]]
name = "second"
runner = "shell"
command = "exit 1"

[[steps]]
name = "third"
runner = "shell"
command = "touch third.done"
"""


def _build(workdir, session):
    return BuildSystem(workdir=workdir, session=session, progress=NullProgress()).build()


class TestEndToEnd:
    def test_successful_build(self, workdir, write_manifest, fixture_archive):
        write_manifest(sha256_of(fixture_archive), BUILD_STEP)
        session = FakeSession({URL: FakeResponse(fixture_archive)})
        result = _build(workdir, session)
        assert result.ok, result.error
        assert result.state is BuildStage.DONE
        assert [c["url"] for c in session.calls] == [URL]
        assert result.fetched == [workdir / "pkg-1.2.3.tar.gz"]
        assert (workdir / "sources" / "hello-1.2.3" / "README").read_bytes() == b"hello world\n"
        assert result.to_dict()["package"] == "hello-1.2.3"

    def test_rerun_uses_cache(self, workdir, write_manifest, fixture_archive):
        write_manifest(sha256_of(fixture_archive), BUILD_STEP)
        session = FakeSession({URL: FakeResponse(fixture_archive)})
        assert _build(workdir, session).ok
        assert _build(workdir, session).ok
        assert len(session.calls) == 1

    def test_build_package_uses_cwd(self, workdir, write_manifest, fixture_archive):
        write_manifest(sha256_of(fixture_archive), BUILD_STEP)
        result = build_package(session=FakeSession({URL: FakeResponse(fixture_archive)}), progress=NullProgress())
        assert result.ok


class TestFailures:
    def test_missing_manifest(self, workdir):
        result = _build(workdir, FakeSession())
        assert not result.ok
        assert result.state is BuildStage.FAILED
        assert result.failed_stage is BuildStage.LOAD_MANIFEST
        assert isinstance(result.error, ManifestNotFound)

    def test_unknown_runner_fails_before_fetch(self, workdir, write_manifest, fixture_archive):
        write_manifest(sha256_of(fixture_archive), BUILD_STEP.replace('"shell"', '"docker"'))
        session = FakeSession({URL: FakeResponse(fixture_archive)})
        result = _build(workdir, session)
        assert result.failed_stage is BuildStage.LOAD_MANIFEST
        assert isinstance(result.error, UnknownRunner)
        assert session.calls == []

    def test_checksum_mismatch(self, workdir, write_manifest, fixture_archive):
        write_manifest(sha256_of(b"something else"), BUILD_STEP)
        result = _build(workdir, FakeSession({URL: FakeResponse(fixture_archive)}))
        assert result.failed_stage is BuildStage.FETCH_SOURCES
        assert isinstance(result.error, ChecksumMismatch)
        assert not (workdir / "sources").exists()

    def test_network_error(self, workdir, write_manifest, fixture_archive):
        write_manifest(sha256_of(fixture_archive), BUILD_STEP)
        result = _build(workdir, FakeSession())
        assert result.failed_stage is BuildStage.FETCH_SOURCES
        assert isinstance(result.error, NetworkError)

    def test_extraction_failure(self, workdir, write_manifest):
        body = b"not an archive"
        write_manifest(sha256_of(body), BUILD_STEP)
        result = _build(workdir, FakeSession({URL: FakeResponse(body)}))
        assert result.failed_stage is BuildStage.EXTRACT_SOURCES

    def test_second_step_failure_stops_pipeline(self, workdir, write_manifest, fixture_archive):
        write_manifest(sha256_of(fixture_archive), THREE_STEPS)
        result = _build(workdir, FakeSession({URL: FakeResponse(fixture_archive)}))
        assert not result.ok
        assert result.failed_stage is BuildStage.RUN_STEPS
        assert isinstance(result.error, StepExecutionFailure)
        assert result.error.step == "second"
        assert (workdir / "first.done").exists()
        assert not (workdir / "third.done").exists()

    def test_cancelled_download(self, workdir, write_manifest, fixture_archive):
        write_manifest(sha256_of(fixture_archive), BUILD_STEP)
        cancel = threading.Event()
        cancel.set()
        bs = BuildSystem(workdir=workdir, session=FakeSession({URL: FakeResponse(fixture_archive)}),
                         progress=NullProgress(), cancel_event=cancel)
        result = bs.build()
        assert result.failed_stage is BuildStage.FETCH_SOURCES

    def test_steps_not_run_when_extract_fails(self, workdir, write_manifest):
        body = b"garbage"
        write_manifest(sha256_of(body), BUILD_STEP)
        with patch("blossom.modules.buildsystem.run_step") as run_step:
            _build(workdir, FakeSession({URL: FakeResponse(body)}))
        run_step.assert_not_called()


class TestPolicies:
    def test_clean_all_wipes_sources(self, workdir, write_manifest, write_config, fixture_archive):
        write_config({"build": {"clean_sources": "all"}})
        (workdir / "sources" / "leftover").mkdir(parents=True)
        write_manifest(sha256_of(fixture_archive), BUILD_STEP)
        assert _build(workdir, FakeSession({URL: FakeResponse(fixture_archive)})).ok
        assert not (workdir / "sources" / "leftover").exists()

    def test_packaging_stage(self, workdir, write_manifest, write_config, fixture_archive):
        write_config({"build": {"create_tarball": True}})
        steps = BUILD_STEP + """
[[steps]]
name = "collect"
path = "sources/hello-1.2.3/README"
"""
        write_manifest(sha256_of(fixture_archive), steps)
        result = _build(workdir, FakeSession({URL: FakeResponse(fixture_archive)}))
        assert result.ok, result.error
        assert result.tarball == workdir / "hello_1.2.3.peach"
        with tarfile.open(result.tarball, "r:gz") as tar:
            assert "./README" in tar.getnames()
