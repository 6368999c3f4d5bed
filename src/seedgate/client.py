"""Provisioning-side seed retrieval.

Hashes a file on the installation medium, exchanges the hash for a signed
seed and writes ``seed.json`` beneath a destination directory on the medium.
One request per call; retrying is the caller's decision.
"""
from __future__ import annotations

import base64
import getpass
import hashlib
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Callable, Mapping, Optional, Union

import httpx
from pydantic import ValidationError

from .errors import (
    DecodeFailure,
    FileUnreadable,
    HashRejected,
    PersistFailure,
    SeedRejected,
    TransportFailure,
    UserUnavailable,
)
from .models import SeedResponse, SignedSeed, StatusCode
from .utils.logging import get_logger

log = get_logger()

SEED_FILENAME = "seed.json"
REJECTED_MARKER = "not in allowlist"

_FQDN = re.compile(
    r"^(([a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9\-]*[a-zA-Z0-9])\.){2,}"
    r"([A-Za-z0-9/]|[A-Za-z0-9][A-Za-z0-9\-]*[A-Za-z0-9]){2,}$"
)

PathLike = Union[str, os.PathLike]


def file_hash(path: PathLike, chunk_size: int = 1 << 20) -> bytes:
    """SHA-256 digest of the whole file, read in chunks."""
    if not path:
        raise FileUnreadable("path was empty")
    h = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(chunk_size), b""):
                h.update(chunk)
    except OSError as e:
        raise FileUnreadable(f"hashing {path}: {e}") from e
    return h.digest()


def effective_username(
    getuser: Optional[Callable[[], str]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> str:
    """The requesting user; under sudo this is the invoking user, not root."""
    env = os.environ if env is None else env
    getuser = getuser or getpass.getuser
    try:
        name = getuser()
    except Exception as e:
        raise UserUnavailable(f"user detection error: {e}") from e
    if name == "root":
        name = env.get("SUDO_USER", "")
    if not name:
        raise UserUnavailable("could not determine username")
    return name


def normalize_seed_server(fqdn: str) -> str:
    """Full URLs pass through; a bare FQDN is validated and gets ``https://``."""
    if fqdn.startswith(("https://", "http://")):
        return fqdn
    if not _FQDN.match(fqdn):
        raise ValueError(f"{fqdn!r} is not a valid FQDN")
    return "https://" + fqdn


def connect(token: Optional[str] = None, timeout: float = 30.0) -> httpx.Client:
    """Client for the seed server. The requestor identity is asserted by the
    authenticating front end, so only an optional bearer token is attached.
    """
    headers = {}
    token = token if token is not None else os.getenv("SEEDGATE_TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.Client(headers=headers, timeout=timeout)


def request_seed(client: httpx.Client, url: str, digest: bytes) -> SignedSeed:
    if not digest:
        raise ValueError("missing hash")
    body = {"Hash": base64.b64encode(digest).decode("ascii")}
    try:
        resp = client.post(url, json=body)
    except httpx.HTTPError as e:
        raise TransportFailure(f"POST {url}: {e}") from e
    text = resp.text
    if REJECTED_MARKER in text:
        raise HashRejected(f"seed server rejected hash {digest.hex()}")
    try:
        sr = SeedResponse.model_validate_json(text)
    except ValidationError as e:
        raise DecodeFailure(f"decoding seed response (HTTP {resp.status_code}): {e}") from e
    if sr.error_code != StatusCode.SUCCESS or sr.seed is None:
        raise SeedRejected(sr.status, sr.error_code)
    return SignedSeed(seed=sr.seed, signature=sr.signature)


def write_seed(destination_dir: PathLike, signed: SignedSeed) -> Path:
    content = json.dumps(signed.wire(), indent=2) + "\n"
    dest = Path(destination_dir)
    try:
        dest.mkdir(mode=0o755, parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".seed-", suffix=".tmp", dir=dest)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, 0o644)
            os.replace(tmp, dest / SEED_FILENAME)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise PersistFailure(f"writing {dest / SEED_FILENAME}: {e}") from e
    return dest / SEED_FILENAME


def load_seed_file(path: PathLike) -> SignedSeed:
    return SignedSeed.model_validate_json(Path(path).read_text(encoding="utf-8"))


def obtain_and_persist_seed(
    file_to_hash: PathLike,
    seed_server_url: str,
    destination_dir: PathLike,
    client: Optional[httpx.Client] = None,
) -> Path:
    digest = file_hash(file_to_hash)
    log.info("hashed %s: %s", file_to_hash, digest.hex())
    user = effective_username()
    log.info("requesting seed from %s as user %s", seed_server_url, user)
    own = client is None
    client = client or connect()
    try:
        signed = request_seed(client, seed_server_url, digest)
    finally:
        if own:
            client.close()
    path = write_seed(destination_dir, signed)
    log.info("wrote seed issued %s to %s", signed.seed.issued.isoformat(), path)
    return path
