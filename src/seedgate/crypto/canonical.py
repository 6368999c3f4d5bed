"""Canonical byte form of a seed, the exact input to signing and verification.

Keys are sorted at every level and separators carry no whitespace, so the
issuer and any later verifier derive identical bytes from the same model.
Seeds contain no floats, which keeps the encoding unambiguous.
"""
from __future__ import annotations

import json
from typing import Any

from ..models import Seed


def canonicalize(obj: Any) -> bytes:
    text = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return text.encode("utf-8")


def canonical_seed_bytes(seed: Seed) -> bytes:
    return canonicalize(seed.wire())
