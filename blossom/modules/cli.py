#!/usr/bin/env python3
# blossom/modules/cli.py
"""
Blossom CLI

Subcommands:
- build                 build the package described by package.toml in the current directory
- install -p PACKAGE    install a .peach package file
- uninstall -n NAME     remove an installed package
- info -n NAME          show an installed package record

Each subcommand calls exactly one entry point and exits non-zero on failure.
"""

from __future__ import annotations

import argparse
import datetime
import logging
import sys
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from blossom import __version__
from blossom.modules import config as config_mod
from blossom.modules import pkgtool
from blossom.modules.buildsystem import build_package
from blossom.modules.errors import BlossomError
from blossom.modules.logging import get_logger, set_level

logger = get_logger("cli")
console = Console()

# -----------------------
# Small pretty helpers
# -----------------------
def print_ok(msg: str):
    console.print(f"[bold green]✔[/] {msg}")

def print_warn(msg: str):
    console.print(f"[bold yellow]![/] {msg}")

def print_err(msg: str):
    console.print(f"[bold red]✖[/] {msg}")

def print_info(msg: str):
    console.print(f"[cyan]{msg}[/cyan]")

# -----------------------
# CLI Implementation
# -----------------------
class BlossomCLI:
    def build(self) -> bool:
        result = build_package()
        if not result.ok:
            print_err(f"Build failed at {result.failed_stage.value}: {result.error}")
            return False
        pkg = result.package
        print_ok(f"Built {pkg.info.name} {pkg.info.version}")
        if result.tarball:
            print_info(f"Package written to {result.tarball}")
        return True

    def install(self, package: str) -> bool:
        res = pkgtool.install(package)
        print_ok(f"Installed {res['name']} {res['version']} ({res['files']} files)")
        return True

    def uninstall(self, name: str) -> bool:
        res = pkgtool.uninstall(name)
        print_ok(f"Uninstalled {name} ({res['removed']} files removed)")
        return True

    def info(self, name: str) -> bool:
        record = pkgtool.info(name)
        if record is None:
            print_warn(f"{name} is not installed")
            return False
        table = Table(title=f"{record['name']} {record['version']}", show_header=False)
        table.add_column("field", style="bold")
        table.add_column("value")
        table.add_row("name", record["name"])
        table.add_row("version", record["version"])
        table.add_row("root", record.get("root", ""))
        table.add_row("package", record.get("package", ""))
        ts = record.get("installed_at")
        if ts:
            table.add_row("installed", datetime.datetime.fromtimestamp(ts).isoformat(timespec="seconds"))
        table.add_row("files", str(len(record.get("files", []))))
        console.print(table)
        return True

# -----------------------
# Argparse wiring
# -----------------------
def make_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="blossom", description="Blossom source package builder")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--config", help="path to a YAML config file")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = ap.add_subparsers(dest="cmd")

    sub.add_parser("build", help="build the package in the current directory")

    p_install = sub.add_parser("install", help="install a .peach package")
    p_install.add_argument("-p", "--package", required=True, help="path to the .peach file")

    p_uninstall = sub.add_parser("uninstall", help="remove an installed package")
    p_uninstall.add_argument("-n", "--name", required=True)

    p_info = sub.add_parser("info", help="show an installed package")
    p_info.add_argument("-n", "--name", required=True)

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = make_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return 2

    try:
        if args.config:
            config_mod.reload(args.config)
        if args.verbose:
            set_level(logging.DEBUG)

        cli = BlossomCLI()
        if args.cmd == "build":
            ok = cli.build()
        elif args.cmd == "install":
            ok = cli.install(args.package)
        elif args.cmd == "uninstall":
            ok = cli.uninstall(args.name)
        else:
            ok = cli.info(args.name)
    except (BlossomError, OSError) as e:
        logger.debug("command %s failed", args.cmd, exc_info=True)
        print_err(f"Command failed: {e}")
        return 1
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
