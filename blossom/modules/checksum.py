# blossom/modules/checksum.py
"""
checksum.py - algorithm-tagged digest verification

Features:
- Checksum strings in the form "<algorithm>:<hex digest>"
- blake3 (blake3 package), sha256 and sha512 (hashlib); extensible via register_algorithm
- Case-insensitive digest comparison
- Streaming file hashing (check_hash) and in-memory hashing (verify_bytes)
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Callable, Dict, Tuple, Union

import blake3

from blossom.modules.errors import InvalidChecksumFormat, UnsupportedHashAlgorithm

CHUNK_SIZE = 1024 * 1024

# name -> factory returning an object with update()/hexdigest()
ALGORITHMS: Dict[str, Callable[[], Any]] = {
    "blake3": blake3.blake3,
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}


def register_algorithm(name: str, factory: Callable[[], Any]) -> None:
    ALGORITHMS[name.lower()] = factory


def parse_checksum(checksum: str) -> Tuple[str, str]:
    """Split 'algo:digest' and check the algorithm is known. No hashing happens here."""
    if not isinstance(checksum, str) or ":" not in checksum:
        raise InvalidChecksumFormat(str(checksum))
    algorithm, digest = checksum.split(":", 1)
    algorithm = algorithm.strip().lower()
    digest = digest.strip().lower()
    if not algorithm or not digest:
        raise InvalidChecksumFormat(checksum)
    if algorithm not in ALGORITHMS:
        raise UnsupportedHashAlgorithm(algorithm)
    return algorithm, digest


def _hasher(algorithm: str):
    factory = ALGORITHMS.get(algorithm.lower())
    if factory is None:
        raise UnsupportedHashAlgorithm(algorithm)
    return factory()


def compute_digest(data: bytes, algorithm: str) -> str:
    h = _hasher(algorithm)
    h.update(data)
    return h.hexdigest().lower()


def compute_file_digest(path: Union[str, Path], algorithm: str) -> str:
    h = _hasher(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest().lower()


def verify_bytes(data: bytes, checksum: str) -> bool:
    algorithm, expected = parse_checksum(checksum)
    return compute_digest(data, algorithm) == expected


def check_hash(path: Union[str, Path], checksum: str) -> bool:
    """True when the file at path exists and matches checksum."""
    algorithm, expected = parse_checksum(checksum)
    p = Path(path)
    if not p.is_file():
        return False
    return compute_file_digest(p, algorithm) == expected
