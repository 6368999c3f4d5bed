"""Signing identity of the seed service.

The hosting platform is expected to provide an identity that can sign bytes
with a rotating private key and publish the certificates for the keys still
in rotation. ``LocalIdentity`` is the file-backed development stand-in: RSA
keys with self-signed certificates kept under one directory.
"""
from __future__ import annotations

import datetime
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Protocol, Tuple, runtime_checkable

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID

from .errors import IdentityUnavailable, SigningFailure
from .models import Certificate


@runtime_checkable
class IdentityService(Protocol):
    def sign_bytes(self, data: bytes) -> Tuple[str, bytes]: ...
    def public_certificates(self) -> List[Certificate]: ...
    def service_account(self) -> str: ...


def _self_signed(sk: rsa.RSAPrivateKey, common_name: str, days: int) -> x509.Certificate:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(sk.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=days))
        .sign(sk, hashes.SHA256())
    )


@dataclass
class LocalIdentity:
    """DEV-ONLY identity. Keys live in ``key_dir`` as ``<name>.key.pem`` and
    ``<name>.crt.pem``; the newest key signs, the last ``keep`` keys publish
    certificates so seeds signed before a rotation still verify.
    """

    key_dir: str
    account: str = "seedgate-dev@localhost"
    key_size: int = 2048
    keep: int = 2
    cert_days: int = 30
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def __post_init__(self):
        os.makedirs(self.key_dir, exist_ok=True)
        if not self._key_names():
            self.rotate()

    def _key_names(self) -> List[str]:
        names = [p.name[: -len(".key.pem")] for p in Path(self.key_dir).glob("*.key.pem")]
        return sorted(names)

    def rotate(self) -> str:
        with self._lock:
            names = self._key_names()
            idx = int(names[-1].split("-")[1]) + 1 if names else 1
            key_name = f"key-{idx:04d}"
            sk = rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)
            cert = _self_signed(sk, self.account, self.cert_days)
            base = Path(self.key_dir) / key_name
            Path(f"{base}.key.pem").write_bytes(sk.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            ))
            Path(f"{base}.crt.pem").write_bytes(cert.public_bytes(serialization.Encoding.PEM))
            for old in self._key_names()[: -self.keep]:
                for suffix in (".key.pem", ".crt.pem"):
                    (Path(self.key_dir) / f"{old}{suffix}").unlink(missing_ok=True)
            return key_name

    def sign_bytes(self, data: bytes) -> Tuple[str, bytes]:
        with self._lock:
            names = self._key_names()
            if not names:
                raise SigningFailure(f"no signing key under {self.key_dir}")
            key_name = names[-1]
            try:
                pem = (Path(self.key_dir) / f"{key_name}.key.pem").read_bytes()
                sk = serialization.load_pem_private_key(pem, password=None)
            except (OSError, ValueError) as e:
                raise SigningFailure(f"loading {key_name}: {e}") from e
        if not isinstance(sk, rsa.RSAPrivateKey):
            raise SigningFailure(f"{key_name} is not an RSA key")
        return key_name, sk.sign(data, padding.PKCS1v15(), hashes.SHA256())

    def public_certificates(self) -> List[Certificate]:
        with self._lock:
            certs = []
            for name in reversed(self._key_names()):
                path = Path(self.key_dir) / f"{name}.crt.pem"
                if path.exists():
                    certs.append(Certificate(key_name=name, data=path.read_bytes()))
            return certs

    def service_account(self) -> str:
        if not self.account:
            raise IdentityUnavailable("no service account configured")
        return self.account
