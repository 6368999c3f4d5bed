"""HTTP surface of the seed service.

``POST /seed`` issues signed seeds, ``POST /sign`` validates a presented seed
and returns a signed URL. Every failure is logged with context and reduced to
a generic ``Status`` string plus an ``ErrorCode`` for the caller.
"""
from __future__ import annotations

import os
import threading
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple, Type, TypeVar

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.requests import ClientDisconnect

from .allowlist import CachedAllowlist
from .config import ServerSettings, load_settings
from .errors import IdentityUnavailable, MalformedRequest, MissingIdentity, SeedgateError, UnreadableRequest
from .identity import IdentityService, LocalIdentity
from .issuer import SeedIssuer
from .minter import SignedURLMinter
from .models import SeedRequest, SeedResponse, SignRequest, SignResponse, StatusCode
from .obs.prom import observe_seed, observe_sign, prometheus_latest
from .storage import (
    FileObjectStore,
    GCSObjectStore,
    HttpObjectStore,
    ObjectStore,
    SignedURLPlatform,
    V4SignedURLPlatform,
)
from .utils.clock import utc_now
from .utils.logging import get_logger
from .validator import SignRequestValidator

log = get_logger()

M = TypeVar("M", bound=BaseModel)

_IAP_PREFIX = "accounts.google.com:"


class Services:
    """Collaborators shared by both endpoints, built on first use."""

    def __init__(
        self,
        identity: Optional[IdentityService] = None,
        store: Optional[ObjectStore] = None,
        platform: Optional[SignedURLPlatform] = None,
    ):
        self._identity = identity
        self._store = store
        self._platform = platform
        self._lock = threading.Lock()
        self._allowlists: Dict[Tuple[str, str, float], CachedAllowlist] = {}

    @property
    def identity(self) -> IdentityService:
        with self._lock:
            if self._identity is None:
                self._identity = LocalIdentity(
                    key_dir=os.getenv("IDENTITY_KEY_DIR", "var/identity"),
                    account=os.getenv("SERVICE_ACCOUNT", "seedgate-dev@localhost"),
                )
            return self._identity

    @property
    def store(self) -> ObjectStore:
        with self._lock:
            if self._store is None:
                url = os.getenv("OBJECT_STORE_URL")
                if os.getenv("OBJECT_STORE_BACKEND") == "gcs":
                    self._store = GCSObjectStore()
                elif url:
                    self._store = HttpObjectStore(base_url=url)
                else:
                    self._store = FileObjectStore(root=os.getenv("OBJECT_STORE_DIR", "var/buckets"))
            return self._store

    @property
    def platform(self) -> SignedURLPlatform:
        with self._lock:
            if self._platform is None:
                self._platform = V4SignedURLPlatform()
            return self._platform

    def allowlist(self, settings: ServerSettings) -> CachedAllowlist:
        key = (settings.bucket, settings.allowlist_path, settings.allowlist_cache_ttl)
        store = self.store
        with self._lock:
            if key not in self._allowlists:
                self._allowlists[key] = CachedAllowlist(store, *key)
            return self._allowlists[key]

    def collaborators(self, settings: ServerSettings) -> Tuple[IdentityService, CachedAllowlist]:
        """Identity and allowlist for one request. Building the identity can
        generate keys; call from a worker thread.
        """
        try:
            identity = self.identity
        except OSError as e:
            raise IdentityUnavailable(f"initializing signing identity: {e}") from e
        return identity, self.allowlist(settings)


def requestor(request: Request, settings: ServerSettings) -> str:
    """Identity asserted by the authenticating front end, never by the payload."""
    value = request.headers.get(settings.identity_header, "").strip()
    if value.startswith(_IAP_PREFIX):
        value = value[len(_IAP_PREFIX):]
    if not value:
        raise MissingIdentity(f"no {settings.identity_header} header on request")
    return value


async def read_model(request: Request, model: Type[M]) -> M:
    try:
        body = await request.body()
    except ClientDisconnect as e:
        raise UnreadableRequest("error reading request body") from e
    if not body:
        raise MalformedRequest("received empty request body")
    try:
        return model.model_validate_json(body)
    except ValidationError as e:
        raise MalformedRequest(f"unable to unmarshal JSON request: {e.error_count()} errors") from e


def error_response(e: SeedgateError) -> JSONResponse:
    return JSONResponse({"Status": e.public, "ErrorCode": int(e.code)}, status_code=500)


def create_app(
    identity: Optional[IdentityService] = None,
    store: Optional[ObjectStore] = None,
    platform: Optional[SignedURLPlatform] = None,
    clock: Callable[[], datetime] = utc_now,
    env: Optional[Dict[str, str]] = None,
) -> FastAPI:
    app = FastAPI(title="seedgate")
    services = Services(identity=identity, store=store, platform=platform)
    app.state.services = services

    @app.get("/__health")
    async def health():
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics():
        body, ctype = prometheus_latest()
        return Response(body, media_type=ctype)

    @app.post("/seed")
    async def seed(request: Request):
        try:
            settings = load_settings(env)
            sr = await read_model(request, SeedRequest)
            user = requestor(request, settings)
            identity, allowlist = await run_in_threadpool(services.collaborators, settings)
            issuer = SeedIssuer(identity, allowlist, settings.policy, clock)
            signed = await run_in_threadpool(issuer.issue_seed, user, sr.hash)
        except SeedgateError as e:
            log.error("seed request failed (%s): %s", type(e).__name__, e)
            observe_seed(e.code)
            return error_response(e)
        resp = SeedResponse(
            status="success",
            error_code=int(StatusCode.SUCCESS),
            seed=signed.seed,
            signature=signed.signature,
        )
        observe_seed(StatusCode.SUCCESS)
        log.info("successfully processed seed request for %s", signed.seed.username)
        return JSONResponse(resp.wire())

    @app.post("/sign")
    async def sign(request: Request):
        try:
            settings = load_settings(env)
            duration = settings.require_signed_url_duration()
            req = await read_model(request, SignRequest)
            identity, allowlist = await run_in_threadpool(services.collaborators, settings)
            validator = SignRequestValidator(
                identity,
                allowlist,
                settings.policy,
                settings.seed_validity_duration,
                clock,
            )
            await run_in_threadpool(validator.validate, req)
            minter = SignedURLMinter(identity, services.platform, clock)
            url = await run_in_threadpool(minter.mint, settings.bucket, req.path, duration)
        except SeedgateError as e:
            log.warning("could not process sign request (%s): %s", type(e).__name__, e)
            observe_sign(e.code)
            return error_response(e)
        observe_sign(StatusCode.SUCCESS)
        log.info("successfully processed sign request for seed issued to %s at %s",
                 req.seed.username, req.seed.issued.isoformat())
        return JSONResponse(SignResponse(status="Success", error_code=0, signed_url=url).wire())

    return app


app = create_app()
