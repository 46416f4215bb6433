# tests/test_meta.py
"""Tests for modules.meta: manifest model and loader."""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from blossom.modules import meta
from blossom.modules.errors import (
    InvalidChecksumFormat,
    InvalidLicenseExpression,
    ManifestNotFound,
    ManifestParseError,
    UnknownRunner,
    UnsupportedHashAlgorithm,
)
from blossom.modules.meta import (
    CommandAction,
    MoveAction,
    dumps_manifest,
    find_manifest,
    load_manifest,
    loads_manifest,
    register_step_variant,
    validate_license,
)

SHA = "sha256:" + "ab" * 32

FULL = f"""
[info]
name = "hello"
version = "2.12"
description = "Prints a greeting"
license = "GPL-3.0-or-later"

[dependencies]
required = ["glibc"]
optional = ["nls"]
build = ["make", "gcc"]

[[sources]]
url = "https://ftp.example.test/hello-%{{version}}.tar.gz"
checksum = "{SHA}"

[[steps]]
name = "configure"
runner = "shell"
command = "./configure --prefix=/usr"

[[steps]]
name = "collect"
path = "sources/hello-2.12/hello"

[directories]
output = "out"
build = "sources/hello-2.12"
"""


def _minimal(extra: str = "", info_extra: str = "") -> str:
    return f"""
[info]
name = "x"
version = "1"
description = ""
license = "MIT"
{info_extra}
{extra}
"""


class TestLoadsManifest:
    def test_full_manifest(self):
        pkg = loads_manifest(FULL)
        assert pkg.info.name == "hello"
        assert pkg.info.version == "2.12"
        assert pkg.dependencies.build == ("make", "gcc")
        assert len(pkg.sources) == 1
        assert pkg.sources[0].url.endswith("hello-%{version}.tar.gz")
        assert [s.name for s in pkg.steps] == ["configure", "collect"]
        assert pkg.steps[0].action == CommandAction(runner="shell", command="./configure --prefix=/usr")
        assert pkg.steps[1].action == MoveAction(path="sources/hello-2.12/hello")
        assert pkg.steps[0].kind == "command"
        assert pkg.steps[1].kind == "move"
        assert pkg.directories == {"output": "out", "build": "sources/hello-2.12"}

    def test_optional_sections_default(self):
        pkg = loads_manifest(_minimal())
        assert pkg.dependencies is None
        assert pkg.sources == ()
        assert pkg.steps == ()
        assert pkg.directories == {}

    def test_numeric_version_is_string(self):
        pkg = loads_manifest(_minimal().replace('version = "1"', "version = 3"))
        assert pkg.info.version == "3"

    def test_invalid_toml(self):
        with pytest.raises(ManifestParseError):
            loads_manifest("[info\nname=")

    def test_missing_info(self):
        with pytest.raises(ManifestParseError):
            loads_manifest('[[sources]]\nurl = "https://a/b.tar.gz"\nchecksum = "sha256:00"\n')

    def test_invalid_license(self):
        text = _minimal().replace('license = "MIT"', 'license = "NOT-A-LICENSE"')
        with pytest.raises(InvalidLicenseExpression):
            loads_manifest(text)

    def test_invalid_license_is_parse_error(self):
        text = _minimal().replace('license = "MIT"', 'license = "MIT AND"')
        with pytest.raises(ManifestParseError):
            loads_manifest(text)

    def test_checksum_format_checked_at_load(self):
        text = _minimal('[[sources]]\nurl = "https://a/b.tar.gz"\nchecksum = "deadbeef"\n')
        with pytest.raises(InvalidChecksumFormat):
            loads_manifest(text)

    def test_checksum_algorithm_checked_at_load(self):
        text = _minimal('[[sources]]\nurl = "https://a/b.tar.gz"\nchecksum = "crc32:deadbeef"\n')
        with pytest.raises(UnsupportedHashAlgorithm):
            loads_manifest(text)


class TestSteps:
    def test_unknown_runner_rejected_at_load(self):
        text = _minimal('[[steps]]\nname = "b"\nrunner = "docker"\ncommand = "make"\n')
        with pytest.raises(UnknownRunner):
            loads_manifest(text)

    def test_command_wins_over_move(self):
        text = _minimal('[[steps]]\nname = "b"\nrunner = "shell"\ncommand = "make"\npath = "x"\n')
        step = loads_manifest(text).steps[0]
        assert isinstance(step.action, CommandAction)

    def test_runner_without_command_is_not_command(self):
        text = _minimal('[[steps]]\nname = "b"\nrunner = "shell"\n')
        with pytest.raises(ManifestParseError, match="matches no step kind"):
            loads_manifest(text)

    def test_step_without_name(self):
        text = _minimal('[[steps]]\nrunner = "shell"\ncommand = "make"\n')
        with pytest.raises(ManifestParseError):
            loads_manifest(text)

    def test_register_variant(self, monkeypatch):
        @dataclass(frozen=True)
        class PatchAction:
            patch: str

            def to_dict(self):
                return {"patch": self.patch}

        monkeypatch.setattr(meta, "STEP_VARIANTS", list(meta.STEP_VARIANTS))
        register_step_variant("patch", ("patch",), PatchAction, lambda name, raw: PatchAction(raw["patch"]))
        step = loads_manifest(_minimal('[[steps]]\nname = "p"\npatch = "fix.diff"\n')).steps[0]
        assert step.kind == "patch"
        assert step.action == PatchAction("fix.diff")

    def test_register_duplicate_kind(self):
        with pytest.raises(ValueError):
            register_step_variant("move", ("path",), MoveAction, lambda n, r: MoveAction(r["path"]))


class TestLicense:
    def test_compound_expression(self):
        assert validate_license("MIT OR Apache-2.0") == "MIT OR Apache-2.0"

    def test_empty(self):
        with pytest.raises(InvalidLicenseExpression):
            validate_license("  ")


class TestFiles:
    def test_find_missing(self, tmp_path):
        with pytest.raises(ManifestNotFound) as exc:
            find_manifest(tmp_path)
        assert str(exc.value) == "package.toml not found in the specified path."

    def test_load_from_disk(self, tmp_path):
        (tmp_path / "package.toml").write_text(FULL)
        pkg = load_manifest(find_manifest(tmp_path))
        assert pkg.info.name == "hello"

    def test_load_missing_path(self, tmp_path):
        with pytest.raises(ManifestNotFound):
            load_manifest(tmp_path / "package.toml")

    def test_dump_and_reload(self):
        pkg = loads_manifest(FULL)
        assert loads_manifest(dumps_manifest(pkg)) == pkg
