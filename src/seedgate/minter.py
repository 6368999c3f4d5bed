"""Signed URL minting for validated sign requests."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from .errors import IdentityUnavailable, SigningFailure
from .identity import IdentityService
from .storage import SignedURLPlatform
from .utils.clock import utc_now
from .utils.logging import get_logger

log = get_logger()


class SignedURLMinter:
    def __init__(
        self,
        identity: IdentityService,
        platform: SignedURLPlatform,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.identity = identity
        self.platform = platform
        self.clock = clock

    def mint(self, bucket: str, path: str, duration: timedelta) -> str:
        try:
            account = self.identity.service_account()
        except IdentityUnavailable:
            raise
        except Exception as e:
            raise IdentityUnavailable(f"resolving service account: {e}") from e
        if not account:
            raise IdentityUnavailable("service account is empty")
        now = self.clock()
        try:
            url = self.platform.signed_url(
                bucket,
                path,
                method="GET",
                expires=now + duration,
                access_id=account,
                sign_bytes=self.identity.sign_bytes,
                now=now,
            )
        except Exception as e:
            raise SigningFailure(f"signing URL for {bucket}/{path}: {e}") from e
        log.info("minted signed URL for %s/%s as %s valid until %s", bucket, path, account,
                 (now + duration).isoformat())
        return url
