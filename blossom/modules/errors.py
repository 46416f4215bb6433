# blossom/modules/errors.py
"""
Error kinds raised across the build pipeline.

Every failure derives from BlossomError so the CLI and the build orchestrator
can report it uniformly; the message always names the offending entity
(manifest path, source URL, archive, step name).
"""

from __future__ import annotations

from typing import Optional


class BlossomError(Exception):
    """Base class for all blossom failures."""


class ConfigError(BlossomError):
    pass


# ----------------------------
# Manifest
# ----------------------------
class ManifestNotFound(BlossomError):
    def __init__(self, path):
        self.path = path
        super().__init__(f"{path} not found in the specified path.")


class ManifestParseError(BlossomError):
    pass


class InvalidLicenseExpression(ManifestParseError):
    def __init__(self, expression: str, reason: str = ""):
        self.expression = expression
        msg = f"invalid license expression {expression!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnknownRunner(ManifestParseError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown runner {name!r}")


# ----------------------------
# Substitution / checksums
# ----------------------------
class UnrecognizedPlaceholder(BlossomError):
    def __init__(self, placeholder: str, template: str):
        self.placeholder = placeholder
        self.template = template
        super().__init__(f"unrecognized placeholder %{{{placeholder}}} in {template!r}")


class InvalidChecksumFormat(BlossomError):
    def __init__(self, checksum: str):
        self.checksum = checksum
        super().__init__(f"Invalid checksum format {checksum!r} (expected '<algorithm>:<hex digest>')")


class UnsupportedHashAlgorithm(BlossomError):
    def __init__(self, algorithm: str):
        self.algorithm = algorithm
        super().__init__(f"Unsupported hash {algorithm!r}")


class ChecksumMismatch(BlossomError):
    def __init__(self, path, expected: str, actual: Optional[str] = None):
        self.path = path
        self.expected = expected
        self.actual = actual
        msg = f"Hash didn't match for {path}: expected {expected}"
        if actual:
            msg += f", got {actual}"
        super().__init__(msg)


# ----------------------------
# Fetching
# ----------------------------
class InvalidSourceURL(BlossomError):
    pass


class NetworkError(BlossomError):
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"failed to download {url}: {reason}")


class BuildCancelled(BlossomError):
    pass


# ----------------------------
# Extraction
# ----------------------------
class UnsupportedArchiveFormat(BlossomError):
    def __init__(self, path):
        self.path = path
        super().__init__(f"unsupported archive format: {path}")


class ExtractionFailure(BlossomError):
    pass


# ----------------------------
# Steps
# ----------------------------
class StepExecutionFailure(BlossomError):
    def __init__(self, step: str, reason: str = ""):
        self.step = step
        self.reason = reason
        msg = f"Step '{step}' failed."
        if reason:
            msg = f"Step '{step}' failed: {reason}"
        super().__init__(msg)


# ----------------------------
# Install / uninstall
# ----------------------------
class InstallError(BlossomError):
    pass


class PackageNotInstalled(BlossomError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"package {name!r} is not installed")
