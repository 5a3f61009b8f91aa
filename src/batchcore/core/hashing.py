"""Stable digests for job instance keys and step definition signatures."""

import hashlib
from typing import Any

_SEPARATOR = "\x1f"


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    SHA-256 hex digest of ``values``, truncated to ``length`` characters.

    Each value goes through ``str`` and the parts are joined with a unit
    separator, so ``("ab", "c")`` and ``("a", "bc")`` hash differently and
    order matters.

    >>> len(compute_hash("simpleJob", "requestDate=2024-01-01"))
    32
    >>> compute_hash("a", "b") == compute_hash("b", "a")
    False
    """
    digest = hashlib.sha256()
    digest.update(_SEPARATOR.join(map(str, values)).encode("utf-8"))
    return digest.hexdigest()[:length]
