"""Environment-driven settings for the seed service.

Settings are read from ``os.environ`` on every request so operators can flip
enforcement toggles without a redeploy. A ``.env`` file, when present, is
loaded once at import.
"""
from __future__ import annotations

import os
import re
from datetime import timedelta
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from .errors import ConfigError

load_dotenv()

DEFAULT_ALLOWLIST_PATH = "appengine_config/pe_allowlist.yaml"
DEFAULT_IDENTITY_HEADER = "X-Goog-Authenticated-User-Email"

_DURATION_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration such as ``5m``, ``720h`` or ``1h30m``."""
    s = value.strip()
    sign = 1
    if s[:1] in ("+", "-"):
        sign = -1 if s[0] == "-" else 1
        s = s[1:]
    if s == "0":
        return timedelta(0)
    if not s:
        raise ValueError(f"invalid duration {value!r}")
    pos = 0
    seconds = 0.0
    for m in _DURATION_RE.finditer(s):
        if m.start() != pos:
            raise ValueError(f"invalid duration {value!r}")
        seconds += float(m.group(1)) * _UNITS[m.group(2)]
        pos = m.end()
    if pos != len(s):
        raise ValueError(f"invalid duration {value!r}")
    try:
        return timedelta(seconds=sign * seconds)
    except OverflowError as e:
        raise ValueError(f"duration {value!r} out of range") from e


def _flag(env: Mapping[str, str], name: str) -> bool:
    # Anything but the exact string "true" leaves the check unenforced.
    return env.get(name, "") == "true"


class EnforcementPolicy(BaseModel):
    """Every check that can be downgraded to log-only, in one place."""

    verify_seed_hash: bool = False
    verify_sign_hash: bool = False
    verify_seed: bool = False
    verify_seed_signature: bool = False
    verify_seed_signature_fallback: bool = False

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "EnforcementPolicy":
        return cls(
            verify_seed_hash=_flag(env, "VERIFY_SEED_HASH"),
            verify_sign_hash=_flag(env, "VERIFY_SIGN_HASH"),
            verify_seed=_flag(env, "VERIFY_SEED"),
            verify_seed_signature=_flag(env, "VERIFY_SEED_SIGNATURE"),
            verify_seed_signature_fallback=_flag(env, "VERIFY_SEED_SIGNATURE_FALLBACK"),
        )


class ServerSettings(BaseModel):
    bucket: str
    allowlist_path: str = DEFAULT_ALLOWLIST_PATH
    signed_url_duration: Optional[timedelta] = None
    seed_validity_duration: Optional[timedelta] = None
    identity_header: str = DEFAULT_IDENTITY_HEADER
    allowlist_cache_ttl: float = 0.0
    policy: EnforcementPolicy = EnforcementPolicy()

    def require_signed_url_duration(self) -> timedelta:
        if self.signed_url_duration is None:
            raise ConfigError("SIGNED_URL_DURATION environment variable not set")
        return self.signed_url_duration


def _optional_duration(env: Mapping[str, str], name: str) -> Optional[timedelta]:
    raw = env.get(name, "")
    if not raw:
        return None
    try:
        d = parse_duration(raw)
    except ValueError as e:
        raise ConfigError(f"{name}={raw!r} is not a valid duration") from e
    if d <= timedelta(0):
        raise ConfigError(f"{name}={raw!r} must be positive")
    return d


def load_settings(env: Optional[Mapping[str, str]] = None) -> ServerSettings:
    env = os.environ if env is None else env
    bucket = env.get("BUCKET", "")
    if not bucket:
        raise ConfigError("BUCKET environment variable not set")
    try:
        ttl = float(env.get("ALLOWLIST_CACHE_TTL", "0") or 0)
    except ValueError as e:
        raise ConfigError("ALLOWLIST_CACHE_TTL must be a number of seconds") from e
    return ServerSettings(
        bucket=bucket,
        allowlist_path=env.get("ALLOWLIST_PATH") or DEFAULT_ALLOWLIST_PATH,
        signed_url_duration=_optional_duration(env, "SIGNED_URL_DURATION"),
        seed_validity_duration=_optional_duration(env, "SEED_VALIDITY_DURATION"),
        identity_header=env.get("IDENTITY_HEADER") or DEFAULT_IDENTITY_HEADER,
        allowlist_cache_ttl=ttl,
        policy=EnforcementPolicy.from_env(env),
    )
