# tests/test_runners.py
"""Tests for modules.runners."""

from __future__ import annotations

import sys

import pytest

from blossom.modules import runners
from blossom.modules.errors import UnknownRunner
from blossom.modules.runners import (
    Runner,
    ShellRunner,
    available_runners,
    base_env,
    get_runner,
    is_known_runner,
    register_runner,
)


class TestShellRunner:
    def test_argv(self):
        assert ShellRunner("/bin/sh").build_argv("make -j4") == ["/bin/sh", "-c", "make -j4"]

    def test_shell_from_config(self, write_config):
        write_config({"runners": {"shell": {"path": "/usr/bin/bash"}}})
        assert ShellRunner().build_argv("true")[0] == "/usr/bin/bash"

    def test_exit_codes(self, tmp_path):
        r = ShellRunner()
        assert r.run("true", cwd=tmp_path) == 0
        assert r.run("exit 3", cwd=tmp_path) == 3

    def test_cwd_and_env(self, tmp_path):
        ShellRunner().run('printf "%s" "$GREETING" > out.txt', cwd=tmp_path, env=base_env({"GREETING": "hi"}))
        assert (tmp_path / "out.txt").read_text() == "hi"

    def test_timeout_counts_as_failure(self, tmp_path):
        assert ShellRunner().run("sleep 5", cwd=tmp_path, timeout=0.2) == 124


class TestRegistry:
    def test_shell_registered(self):
        assert is_known_runner("shell")
        assert "shell" in available_runners()
        assert isinstance(get_runner("shell"), ShellRunner)

    def test_unknown(self):
        assert not is_known_runner("docker")
        with pytest.raises(UnknownRunner):
            get_runner("docker")

    def test_register_custom(self, monkeypatch):
        monkeypatch.setattr(runners, "_RUNNERS", dict(runners._RUNNERS))

        @register_runner
        class PythonRunner(Runner):
            name = "python"

            def build_argv(self, command):
                return [sys.executable, "-c", command]

        assert is_known_runner("python")
        assert get_runner("python").build_argv("pass")[1:] == ["-c", "pass"]

    def test_register_without_name(self):
        class Nameless(Runner):
            def build_argv(self, command):
                return [command]

        with pytest.raises(ValueError):
            register_runner(Nameless)
