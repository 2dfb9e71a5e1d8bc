"""
Utility functions for the burst-stack runner.
"""

import hashlib
import json
from pathlib import Path
from typing import Any, List, Sequence


def sha256_bytes(data: bytes) -> str:
    """Compute SHA256 hash of bytes."""
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def json_dumps_canonical(obj: Any) -> bytes:
    """Canonical JSON serialization for hashing and event lines."""
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":")).encode("utf-8")


def read_blobs(paths: Sequence[Path]) -> List[bytes]:
    """Read every capture file into memory, in the given order."""
    return [Path(p).read_bytes() for p in paths]
