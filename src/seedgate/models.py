"""Wire models for seed issuance and sign requests.

Field aliases match the JSON emitted by the seed service (``Issued``,
``Username``, ``Certs``, ...). Byte fields travel as standard base64 strings.
"""
from __future__ import annotations

import base64
from datetime import datetime, timezone
from enum import IntEnum
from typing import Annotated, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer, field_validator


class StatusCode(IntEnum):
    SUCCESS = 0
    CONFIG_ERROR = 101
    REQ_UNREADABLE = 102
    JSON_ERROR = 103
    SIGN_ERROR = 104
    SEED_ERROR = 105
    SEED_INVALID_HASH = 106
    INVALID_USER = 107


def _b64_in(v):
    if v is None:
        return b""
    if isinstance(v, (bytes, bytearray)):
        return bytes(v)
    if isinstance(v, str):
        return base64.b64decode(v, validate=True)
    raise ValueError("expected base64 string")


B64Bytes = Annotated[
    bytes,
    BeforeValidator(_b64_in),
    PlainSerializer(lambda b: base64.b64encode(b).decode("ascii"), return_type=str),
]


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Certificate(_Wire):
    key_name: str = Field("", alias="KeyName")
    data: B64Bytes = Field(b"", alias="Data")


class Seed(_Wire):
    issued: datetime = Field(alias="Issued")
    username: str = Field("", alias="Username")
    certs: List[Certificate] = Field(default_factory=list, alias="Certs")
    hash: Optional[B64Bytes] = Field(None, alias="Hash")

    @field_validator("issued")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        try:
            return v.astimezone(timezone.utc)
        except OverflowError as e:
            raise ValueError("issue time is outside the representable range") from e


class SignedSeed(_Wire):
    """A seed and the detached signature over its canonical form.

    This is also the exact layout of ``seed.json`` on provisioned media.
    """

    seed: Seed = Field(alias="Seed")
    signature: B64Bytes = Field(b"", alias="Signature")


class SeedRequest(_Wire):
    hash: B64Bytes = Field(b"", alias="Hash")


class SeedResponse(_Wire):
    status: str = Field("", alias="Status")
    error_code: int = Field(0, alias="ErrorCode")
    seed: Optional[Seed] = Field(None, alias="Seed")
    signature: B64Bytes = Field(b"", alias="Signature")


class SignRequest(_Wire):
    seed: Seed = Field(alias="Seed")
    signature: B64Bytes = Field(b"", alias="Signature")
    mac: List[str] = Field(default_factory=list, alias="Mac")
    path: str = Field("", alias="Path")
    hash: B64Bytes = Field(b"", alias="Hash")

    @field_validator("mac", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return [] if v is None else v


class SignResponse(_Wire):
    status: str = Field("", alias="Status")
    error_code: int = Field(0, alias="ErrorCode")
    signed_url: str = Field("", alias="SignedURL")
