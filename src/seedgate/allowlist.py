"""Allowlist of content hashes permitted to obtain seeds and signed URLs.

The authoritative list is a YAML sequence of hex digests kept in object
storage::

    - 314aaa98adcbd86339fb4eece6050b8ae2d38ff8ebb416e231bb7724c99b830d
    - 9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08

A payload with one bare digest per line is accepted as well.
"""
from __future__ import annotations

import re
import threading
import time
from typing import Callable, FrozenSet, Optional

import yaml

from .errors import ParseFailure, ReadFailure, SourceUnavailable
from .storage import ObjectStore
from .utils.logging import get_logger

log = get_logger()

_HEX = re.compile(r"^[0-9a-f]+$")
_HEX_BYTES = re.compile(rb"^[0-9a-fA-F]{64}$")

Allowlist = FrozenSet[str]


def hash_to_hex(raw: bytes) -> str:
    """Allowlist key for a request hash sent either as a raw digest or as hex text."""
    if _HEX_BYTES.match(raw):
        return raw.decode("ascii").lower()
    return raw.hex()


def parse_allowlist(payload: bytes) -> Allowlist:
    try:
        # BaseLoader keeps every scalar a string, so 0123... stays intact.
        doc = yaml.load(payload, Loader=yaml.BaseLoader)
    except yaml.YAMLError as e:
        raise ParseFailure(f"allowlist is not valid YAML: {e}") from e
    if doc is None:
        return frozenset()
    if isinstance(doc, str):
        entries = doc.split()
    elif isinstance(doc, list):
        entries = doc
    else:
        raise ParseFailure(f"allowlist must be a sequence, got {type(doc).__name__}")
    out = set()
    for entry in entries:
        if not isinstance(entry, str):
            raise ParseFailure(f"allowlist entries must be strings, got {type(entry).__name__}")
        h = entry.strip().lower()
        if not h:
            continue
        if not _HEX.match(h):
            raise ParseFailure("allowlist entry is not hex")
        out.add(h)
    return frozenset(out)


def load_allowlist(store: ObjectStore, bucket: str, path: str) -> Allowlist:
    log.info("reading acceptable hashes from %s/%s", bucket, path)
    try:
        handle = store.open(bucket, path)
    except Exception as e:
        raise SourceUnavailable(f"opening {bucket}/{path}: {e}") from e
    try:
        payload = handle.read()
    except Exception as e:
        raise ReadFailure(f"reading {bucket}/{path}: {e}") from e
    finally:
        close = getattr(handle, "close", None)
        if close is not None:
            close()
    return parse_allowlist(payload)


class CachedAllowlist:
    """Caller-side TTL cache around ``load_allowlist``.

    The snapshot is an immutable frozenset replaced whole under the lock, so
    readers never observe a partially updated list. ``ttl <= 0`` disables
    caching and every call goes to storage.
    """

    def __init__(self, store: ObjectStore, bucket: str, path: str, ttl: float,
                 clock: Callable[[], float] = time.monotonic):
        self._store = store
        self._bucket = bucket
        self._path = path
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[Allowlist] = None
        self._loaded_at = 0.0

    def __call__(self) -> Allowlist:
        if self._ttl <= 0:
            return load_allowlist(self._store, self._bucket, self._path)
        with self._lock:
            now = self._clock()
            if self._snapshot is None or now - self._loaded_at > self._ttl:
                self._snapshot = load_allowlist(self._store, self._bucket, self._path)
                self._loaded_at = now
            return self._snapshot
