from datetime import datetime, timezone

import pytest

from seedgate.config import EnforcementPolicy
from seedgate.identity import LocalIdentity
from seedgate.storage import FileObjectStore

GOOD_HASH_HEX = "314aaa98adcbd86339fb4eece6050b8ae2d38ff8ebb416e231bb7724c99b830d"
GOOD_HASH = bytes.fromhex(GOOD_HASH_HEX)
BUCKET = "test"
ALLOWLIST_PATH = "appengine_config/pe_allowlist.yaml"
FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
IAP_HEADER = {"X-Goog-Authenticated-User-Email": "accounts.google.com:test"}

TOGGLES = (
    "VERIFY_SEED_HASH",
    "VERIFY_SIGN_HASH",
    "VERIFY_SEED",
    "VERIFY_SEED_SIGNATURE",
    "VERIFY_SEED_SIGNATURE_FALLBACK",
)


def fixed_clock():
    return FIXED_NOW


def all_checks() -> EnforcementPolicy:
    return EnforcementPolicy(
        verify_seed_hash=True,
        verify_sign_hash=True,
        verify_seed=True,
        verify_seed_signature=True,
        verify_seed_signature_fallback=False,
    )


@pytest.fixture(scope="session")
def identity(tmp_path_factory):
    return LocalIdentity(key_dir=str(tmp_path_factory.mktemp("identity")), account="seedgate-test@localhost")


@pytest.fixture(scope="session")
def other_identity(tmp_path_factory):
    return LocalIdentity(key_dir=str(tmp_path_factory.mktemp("other-identity")), account="other@localhost")


@pytest.fixture
def store(tmp_path):
    root = tmp_path / "buckets"
    allowlist = root / BUCKET / ALLOWLIST_PATH
    allowlist.parent.mkdir(parents=True)
    allowlist.write_text(f"- {GOOD_HASH_HEX}\n")
    return FileObjectStore(root=str(root))


@pytest.fixture
def server_env(monkeypatch):
    for name in TOGGLES + ("ALLOWLIST_PATH", "ALLOWLIST_CACHE_TTL", "IDENTITY_HEADER"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BUCKET", BUCKET)
    monkeypatch.setenv("SIGNED_URL_DURATION", "5m")
    monkeypatch.setenv("SEED_VALIDITY_DURATION", "720h")
    return monkeypatch
