"""Validation of sign requests before a signed URL is minted.

Checks run cheapest first and stop at the first failure:

1. hardware identifiers are 12 hex characters once separators are removed
2. the content hash is allowlisted (VERIFY_SIGN_HASH)
3. the seed names a plausible identity (VERIFY_SEED)
4. the seed is neither expired nor issued in the future (VERIFY_SEED)
5. the seed signature verifies against a trusted certificate
   (VERIFY_SEED_SIGNATURE, optionally falling back to the seed's own
   certificates with VERIFY_SEED_SIGNATURE_FALLBACK)
6. a resource path is present
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from .allowlist import Allowlist, hash_to_hex
from .config import EnforcementPolicy
from .crypto.canonical import canonical_seed_bytes
from .crypto.verify import verify_any
from .errors import (
    AllowlistError,
    ConfigError,
    EmptyResourcePath,
    HashNotAllowed,
    InvalidIdentity,
    MalformedIdentifier,
    SeedExpired,
    SeedFromFuture,
    SignatureUnverifiable,
    UpstreamError,
)
from .identity import IdentityService
from .models import Certificate, Seed, SignRequest
from .obs.prom import record_enforcement_miss
from .utils.clock import utc_now
from .utils.logging import get_logger

log = get_logger()

_MAC_SEPARATORS = re.compile(r"[:\-.]")
_MAC = re.compile(r"^[0-9a-fA-F]{12}$")

MIN_USERNAME_LEN = 3


def valid_mac(mac: str) -> bool:
    return bool(_MAC.match(_MAC_SEPARATORS.sub("", mac)))


class SignRequestValidator:
    def __init__(
        self,
        identity: IdentityService,
        allowlist: Callable[[], Allowlist],
        policy: EnforcementPolicy,
        seed_validity: Optional[timedelta],
        clock: Callable[[], datetime] = utc_now,
    ):
        self.identity = identity
        self.allowlist = allowlist
        self.policy = policy
        self.seed_validity = seed_validity
        self.clock = clock

    def validate(self, req: SignRequest) -> None:
        for mac in req.mac:
            if not valid_mac(mac):
                raise MalformedIdentifier(f"{mac!r} is not a valid mac address")
        self._check_hash(req.hash)
        if self.policy.verify_seed:
            self._check_seed(req.seed)
            if self.policy.verify_seed_signature:
                # The hash was stripped before the seed left the issuer.
                signed = req.seed.model_copy(update={"hash": req.hash})
                self._check_signature(signed, req.signature)
            else:
                log.info("VERIFY_SEED_SIGNATURE not set, skipping seed signature check")
        else:
            log.info("VERIFY_SEED not set, skipping seed verification")
        if not req.path:
            raise EmptyResourcePath("sign request path cannot be empty")

    def _check_hash(self, raw: bytes) -> None:
        enforced = self.policy.verify_sign_hash
        if not enforced:
            log.info("VERIFY_SIGN_HASH is not set to true, hash validation will be logged but not enforced")
        hex_hash = hash_to_hex(raw)
        try:
            accepted = self.allowlist()
        except AllowlistError as e:
            log.warning("failed to validate sign request hash: %s", e)
            record_enforcement_miss("sign_allowlist", enforced)
            if enforced:
                raise
            return
        if hex_hash in accepted:
            log.info("%s passed validation", hex_hash)
            return
        log.warning("submitted hash %s not in accepted hash list", hex_hash)
        record_enforcement_miss("sign_hash", enforced)
        if enforced:
            raise HashNotAllowed(f"submitted hash {hex_hash} not in allowlist")

    def _check_seed(self, seed: Seed) -> None:
        if len(seed.username) < MIN_USERNAME_LEN:
            raise InvalidIdentity(f"the username {seed.username!r} is invalid or empty")
        if self.seed_validity is None:
            raise ConfigError("SEED_VALIDITY_DURATION environment variable is not present")
        now = self.clock()
        if seed.issued > now:
            raise SeedFromFuture(f"seed issued in the future {seed.issued.isoformat()}")
        try:
            expires = seed.issued + self.seed_validity
        except OverflowError:
            expires = datetime.max.replace(tzinfo=timezone.utc)
        if now > expires:
            raise SeedExpired(f"seed expired on {expires.isoformat()}, current date is {now.isoformat()}")

    def _trusted_certificates(self, seed: Seed) -> List[Certificate]:
        try:
            certs = list(self.identity.public_certificates())
        except Exception as e:
            raise UpstreamError(f"retrieving public certificates: {e}") from e
        if self.policy.verify_seed_signature_fallback:
            log.info("adding %d certificates from seed for fallback verification", len(seed.certs))
            certs.extend(seed.certs)
        return certs

    def _check_signature(self, seed: Seed, signature: bytes) -> None:
        certs = self._trusted_certificates(seed)
        log.info("attempting signature verification using %d certs", len(certs))
        if not verify_any(certs, canonical_seed_bytes(seed), signature):
            raise SignatureUnverifiable(
                f"unable to verify signature for seed issued on {seed.issued.isoformat()} to {seed.username}"
            )
