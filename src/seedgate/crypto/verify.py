"""Certificate-backed verification of seed signatures.

A certificate becomes a verifier candidate only if it decodes as PEM X.509
and carries an RSA public key; anything else is skipped, never fatal.
Signatures are PKCS#1 v1.5 over SHA-256.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..models import Certificate
from ..utils.logging import get_logger

log = get_logger()


@dataclass(frozen=True)
class RSACandidate:
    key_name: str
    subject: str
    public_key: rsa.RSAPublicKey

    def verify(self, payload: bytes, signature: bytes) -> bool:
        try:
            self.public_key.verify(signature, payload, padding.PKCS1v15(), hashes.SHA256())
        except InvalidSignature:
            log.debug("signature did not verify with %s", self.key_name)
            return False
        log.info("verified seed signature with certificate %s (%s)", self.key_name, self.subject)
        return True


def candidate_from_certificate(cert: Certificate) -> Optional[RSACandidate]:
    name = cert.key_name or "(unnamed)"
    try:
        parsed = x509.load_pem_x509_certificate(cert.data)
        pk = parsed.public_key()
    except (ValueError, UnsupportedAlgorithm) as e:
        log.debug("certificate %s has no usable public key, skipping: %s", name, type(e).__name__)
        return None
    if not isinstance(pk, rsa.RSAPublicKey):
        log.debug("certificate %s has no RSA public key, skipping", name)
        return None
    return RSACandidate(key_name=cert.key_name, subject=parsed.subject.rfc4514_string(), public_key=pk)


def candidates(certs: Iterable[Certificate]) -> Iterator[RSACandidate]:
    for cert in certs:
        c = candidate_from_certificate(cert)
        if c is not None:
            yield c


def verify_any(certs: Iterable[Certificate], payload: bytes, signature: bytes) -> bool:
    """True on the first certificate that verifies; later ones are not decoded."""
    return any(c.verify(payload, signature) for c in candidates(certs))
