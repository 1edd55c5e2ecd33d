import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from ledgersync.crypto import decrypt_str, encrypt_str
from ledgersync.db import as_utc, utcnow
from ledgersync.errors import CredentialsExpired, UpstreamAPIError
from ledgersync.models import Connection
from ledgersync.provider_client import ProviderClient
from ledgersync.settings import settings
from ledgersync.store import ConnectionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Token:
    secret: str
    expires_at: datetime

    def is_usable(self, now: Optional[datetime] = None, margin_seconds: Optional[int] = None) -> bool:
        now = now or utcnow()
        if margin_seconds is None:
            margin_seconds = settings.TOKEN_EXPIRY_MARGIN_SECONDS
        return self.expires_at - now >= timedelta(seconds=margin_seconds)


def tokens_from_grant(payload: dict, now: Optional[datetime] = None) -> Tuple[Token, Optional[Token]]:
    """Builds (access, refresh) tokens from a token endpoint response.

    The provider only reports the access token lifetime; refresh tokens are
    assumed to live REFRESH_TOKEN_TTL_DAYS from issue.
    """
    now = now or utcnow()
    access = Token(payload["access_token"], now + timedelta(seconds=int(payload.get("expires_in", 3600))))
    refresh = None
    if payload.get("refresh_token"):
        refresh = Token(payload["refresh_token"], now + timedelta(days=settings.REFRESH_TOKEN_TTL_DAYS))
    return access, refresh


def encrypted_fields(access: Token, refresh: Optional[Token] = None) -> dict:
    fields = {
        "access_token_enc": encrypt_str(access.secret),
        "access_token_expires_at": access.expires_at,
    }
    if refresh is not None:
        fields["refresh_token_enc"] = encrypt_str(refresh.secret)
        fields["refresh_token_expires_at"] = refresh.expires_at
    return fields


class TokenLifecycleManager:
    def __init__(self, store: ConnectionStore, provider: ProviderClient):
        self.store = store
        self.provider = provider

    async def get_usable_access_token(self, connection: Connection) -> Token:
        now = utcnow()
        access = Token(decrypt_str(connection.access_token_enc), as_utc(connection.access_token_expires_at))
        if access.is_usable(now):
            return access

        refresh = Token(decrypt_str(connection.refresh_token_enc), as_utc(connection.refresh_token_expires_at))
        if not refresh.is_usable(now):
            logger.error(
                "Refresh token expired, re-authentication required",
                extra={"connection": connection.name, "operation": "token_refresh"},
            )
            raise CredentialsExpired(connection.name)

        logger.info("Access token expired, refreshing", extra={"connection": connection.name, "operation": "token_refresh"})
        try:
            payload = await self.provider.refresh_access_token(refresh.secret)
        except UpstreamAPIError as e:
            if e.status_code in (400, 401, 403):
                # invalid_grant: the provider revoked or rotated the refresh token
                raise CredentialsExpired(connection.name) from e
            raise

        new_access, new_refresh = tokens_from_grant(payload, now)
        if not new_access.is_usable(now):
            raise CredentialsExpired(connection.name)
        # Persist before handing out so a crash cannot lose the rotated credential.
        self.store.update(connection.name, **encrypted_fields(new_access, new_refresh))
        return new_access
