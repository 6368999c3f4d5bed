"""Object storage collaborators: reading configuration objects and signing URLs.

``ObjectStore.open`` returns a readable stream; opening and reading fail
separately so callers can tell a missing object from a broken transfer.
``SignedURLPlatform`` turns a bucket/path into a time-boxed GET URL using a
caller-provided ``sign_bytes`` primitive.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Callable, Optional, Protocol, Tuple, runtime_checkable
from urllib.parse import quote

import httpx
from google.auth import credentials as ga_credentials
from google.auth import crypt
from google.cloud import storage

SignBytes = Callable[[bytes], Tuple[str, bytes]]

MAX_V4_EXPIRY_SECONDS = 7 * 24 * 3600


class Readable(Protocol):
    def read(self) -> bytes: ...


@runtime_checkable
class ObjectStore(Protocol):
    def open(self, bucket: str, path: str) -> Readable: ...


@dataclass
class FileObjectStore:
    """Buckets are directories under ``root``."""

    root: str

    def open(self, bucket: str, path: str) -> BinaryIO:
        base = Path(self.root, bucket).resolve()
        target = (base / path).resolve()
        if base not in target.parents:
            raise FileNotFoundError(f"{path!r} escapes bucket {bucket!r}")
        return open(target, "rb")


class _ResponseReader:
    def __init__(self, resp: httpx.Response, owned: Optional[httpx.Client] = None):
        self._resp = resp
        self._owned = owned

    def read(self) -> bytes:
        try:
            return self._resp.read()
        finally:
            self._resp.close()
            if self._owned is not None:
                self._owned.close()


@dataclass
class HttpObjectStore:
    """Fetches ``{base_url}/{bucket}/{path}`` over HTTP(S)."""

    base_url: str
    client: Optional[httpx.Client] = None
    timeout: float = 10.0

    def open(self, bucket: str, path: str) -> Readable:
        owned = None if self.client is not None else httpx.Client(timeout=self.timeout)
        client = self.client or owned
        url = f"{self.base_url.rstrip('/')}/{quote(bucket)}/{quote(path)}"
        try:
            resp = client.send(client.build_request("GET", url), stream=True)
        except httpx.HTTPError:
            if owned is not None:
                owned.close()
            raise
        if resp.status_code != 200:
            resp.close()
            if owned is not None:
                owned.close()
            raise FileNotFoundError(f"GET {url} returned {resp.status_code}")
        return _ResponseReader(resp, owned)



@dataclass
class GCSObjectStore:
    """Objects in Cloud Storage, read with the ambient credentials."""

    client: Any = None

    def open(self, bucket: str, path: str) -> Readable:
        if self.client is None:
            self.client = storage.Client()
        blob = self.client.bucket(bucket).blob(path)
        if not blob.exists():
            raise FileNotFoundError(f"gs://{bucket}/{path} does not exist")
        return blob.open("rb")


@runtime_checkable
class SignedURLPlatform(Protocol):
    def signed_url(
        self,
        bucket: str,
        path: str,
        *,
        method: str,
        expires: datetime,
        access_id: str,
        sign_bytes: SignBytes,
        now: Optional[datetime] = None,
    ) -> str: ...


class _IdentitySigner(crypt.Signer):
    def __init__(self, sign_bytes: SignBytes):
        self._sign_bytes = sign_bytes
        self._key_id: Optional[str] = None

    @property
    def key_id(self) -> Optional[str]:
        return self._key_id

    def sign(self, message) -> bytes:
        if isinstance(message, str):
            message = message.encode("utf-8")
        self._key_id, sig = self._sign_bytes(message)
        return sig


class IdentitySigningCredentials(ga_credentials.Signing):
    """Signing credentials whose private key never leaves the identity service."""

    def __init__(self, access_id: str, sign_bytes: SignBytes):
        self._access_id = access_id
        self._signer = _IdentitySigner(sign_bytes)

    def sign_bytes(self, message: bytes) -> bytes:
        return self._signer.sign(message)

    @property
    def signer_email(self) -> str:
        return self._access_id

    @property
    def signer(self) -> crypt.Signer:
        return self._signer


@dataclass
class V4SignedURLPlatform:
    """GOOG4-RSA-SHA256 query-string URLs generated by google-cloud-storage."""

    host: str = "storage.googleapis.com"
    _client: Any = field(default=None, init=False, repr=False)

    def _storage_client(self) -> storage.Client:
        if self._client is None:
            # URL signing makes no API calls.
            self._client = storage.Client.create_anonymous_client()
        return self._client

    def signed_url(
        self,
        bucket: str,
        path: str,
        *,
        method: str,
        expires: datetime,
        access_id: str,
        sign_bytes: SignBytes,
        now: Optional[datetime] = None,
    ) -> str:
        now = now or datetime.now(timezone.utc)
        ttl = expires - now
        if ttl.total_seconds() < 1 or ttl.total_seconds() > MAX_V4_EXPIRY_SECONDS:
            raise ValueError(f"expiry must be within [1, {MAX_V4_EXPIRY_SECONDS}] seconds, got {ttl}")
        blob = self._storage_client().bucket(bucket).blob(path)
        return blob.generate_signed_url(
            version="v4",
            method=method.upper(),
            expiration=ttl,
            api_access_endpoint=f"https://{self.host}",
            credentials=IdentitySigningCredentials(access_id, sign_bytes),
        )
