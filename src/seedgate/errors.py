"""Error taxonomy shared by the seed service and the provisioning client.

Each server-side error carries the ``StatusCode`` returned to callers and a
generic ``public`` status string. The exception message is for logs only and
never leaves the process.
"""
from __future__ import annotations

from .models import StatusCode


class SeedgateError(Exception):
    code: StatusCode = StatusCode.SEED_ERROR
    public: str = "request failed"


# configuration

class ConfigError(SeedgateError):
    code = StatusCode.CONFIG_ERROR
    public = "server configuration error"


# request format

class RequestError(SeedgateError):
    code = StatusCode.JSON_ERROR


class UnreadableRequest(RequestError):
    code = StatusCode.REQ_UNREADABLE
    public = "unable to read request body"


class MalformedRequest(RequestError):
    code = StatusCode.JSON_ERROR
    public = "unable to decode request"


# authorization

class AuthorizationError(SeedgateError):
    pass


class MissingIdentity(AuthorizationError):
    code = StatusCode.INVALID_USER
    public = "no user"


class InvalidIdentity(AuthorizationError):
    code = StatusCode.INVALID_USER
    public = "invalid user"


class HashNotAllowed(AuthorizationError):
    code = StatusCode.SEED_INVALID_HASH
    # Clients match on this phrase to tell rejection apart from failure.
    public = "request hash not in allowlist"


class MalformedIdentifier(AuthorizationError):
    code = StatusCode.REQ_UNREADABLE
    public = "malformed hardware identifier"


class SeedExpired(AuthorizationError):
    public = "seed expired"


class SeedFromFuture(AuthorizationError):
    public = "seed issued in the future"


class SignatureUnverifiable(AuthorizationError):
    public = "unable to verify seed signature"


class EmptyResourcePath(AuthorizationError):
    code = StatusCode.REQ_UNREADABLE
    public = "sign request path cannot be empty"


# upstream

class UpstreamError(SeedgateError):
    code = StatusCode.SIGN_ERROR
    public = "upstream service failure"


class SigningFailure(UpstreamError):
    public = "signing failed"


class IdentityUnavailable(UpstreamError):
    public = "signing identity unavailable"


class AllowlistError(UpstreamError):
    code = StatusCode.SEED_ERROR
    public = "allowlist unavailable"


class SourceUnavailable(AllowlistError):
    pass


class ReadFailure(AllowlistError):
    pass


class ParseFailure(AllowlistError):
    pass


# provisioning client

class SeedClientError(Exception):
    pass


class FileUnreadable(SeedClientError):
    pass


class UserUnavailable(SeedClientError):
    pass


class TransportFailure(SeedClientError):
    pass


class DecodeFailure(SeedClientError):
    pass


class HashRejected(SeedClientError):
    pass


class SeedRejected(SeedClientError):
    def __init__(self, status: str, code: int):
        super().__init__(f"seed rejected: {status} ({code})")
        self.status = status
        self.code = code


class PersistFailure(SeedClientError):
    pass
