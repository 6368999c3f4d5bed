"""Seed issuance: validate a request, build a seed and have the identity sign it."""
from __future__ import annotations

from datetime import datetime
from typing import Callable

from .allowlist import Allowlist, hash_to_hex
from .config import EnforcementPolicy
from .crypto.canonical import canonical_seed_bytes
from .errors import AllowlistError, HashNotAllowed, MissingIdentity, SigningFailure
from .identity import IdentityService
from .models import Seed, SignedSeed
from .obs.prom import record_enforcement_miss
from .utils.clock import utc_now
from .utils.logging import get_logger

log = get_logger()


class SeedIssuer:
    def __init__(
        self,
        identity: IdentityService,
        allowlist: Callable[[], Allowlist],
        policy: EnforcementPolicy,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.identity = identity
        self.allowlist = allowlist
        self.policy = policy
        self.clock = clock

    def _check_hash(self, requestor: str, hex_hash: str) -> None:
        enforced = self.policy.verify_seed_hash
        if not enforced:
            log.info("VERIFY_SEED_HASH is not set to true, hash validation will be logged but not enforced")
        try:
            accepted = self.allowlist()
        except AllowlistError as e:
            log.error("failed to populate hash allowlist: %s", e)
            record_enforcement_miss("seed_allowlist", enforced)
            if enforced:
                raise
            return
        if hex_hash in accepted:
            return
        log.warning("seed request from %s with hash %s not in allowlist", requestor, hex_hash)
        record_enforcement_miss("seed_hash", enforced)
        if enforced:
            raise HashNotAllowed(f"request hash {hex_hash} not in allowlist")

    def issue_seed(self, requestor: str, requested_hash: bytes) -> SignedSeed:
        if not requestor:
            raise MissingIdentity("seed requested without an authenticated identity")
        hex_hash = hash_to_hex(requested_hash)
        self._check_hash(requestor, hex_hash)
        log.info("validated seed request from %s with hash %s", requestor, hex_hash)

        try:
            certs = self.identity.public_certificates()
        except Exception as e:
            raise SigningFailure(f"retrieving public certificates: {e}") from e
        seed = Seed(issued=self.clock(), username=requestor, certs=certs, hash=requested_hash)
        try:
            key_name, sig = self.identity.sign_bytes(canonical_seed_bytes(seed))
        except SigningFailure:
            raise
        except Exception as e:
            raise SigningFailure(f"sign failed: {e}") from e
        log.info("signed seed for %s issued %s with key %s", requestor, seed.issued.isoformat(), key_name)

        # The client regenerates the hash and presents it with sign requests.
        return SignedSeed(seed=seed.model_copy(update={"hash": None}), signature=sig)
