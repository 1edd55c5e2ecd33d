import logging
import secrets
from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ledgersync.db import as_utc, utcnow
from ledgersync.errors import InvalidInput, InvalidState
from ledgersync.fetcher import TransactionSourceFetcher, attach_balances
from ledgersync.models import Connection, OAuthState
from ledgersync.provider_client import ProviderClient
from ledgersync.schemas import ConnectionOut
from ledgersync.settings import settings
from ledgersync.store import ConnectionStore
from ledgersync.tokens import encrypted_fields, tokens_from_grant

logger = logging.getLogger(__name__)


def _millis(value) -> Optional[int]:
    value = as_utc(value)
    return int(value.timestamp() * 1000) if value else None


class ConnectionService:
    """OAuth connect flow and connection listing/removal."""

    def __init__(self, store: ConnectionStore, provider: ProviderClient, fetcher: TransactionSourceFetcher):
        self.store = store
        self.provider = provider
        self.fetcher = fetcher

    def start_auth(self, db: Session, name: Optional[str], return_url: Optional[str] = None) -> str:
        name = (name or "").strip()
        if not name:
            raise InvalidInput("Invalid connection name")
        if self.store.exists(name):
            raise InvalidInput("Connection name should be unique")

        state = secrets.token_urlsafe(24)
        db.add(OAuthState(
            state=state,
            connection_name=name,
            return_url=return_url,
            expires_at=utcnow() + timedelta(minutes=settings.OAUTH_STATE_TTL_MINUTES),
        ))
        db.commit()
        logger.info("Started connect flow", extra={"connection": name, "operation": "auth"})
        return self.provider.auth_url(state)

    def consume_state(self, db: Session, state: Optional[str]) -> Tuple[str, Optional[str]]:
        """Returns (connection_name, return_url) for a valid state; a state works once."""
        if not state:
            raise InvalidState("Invalid state parameter")
        row = db.query(OAuthState).filter(OAuthState.state == state).first()
        if row is None:
            raise InvalidState("Invalid state parameter")

        name, return_url, expires_at = row.connection_name, row.return_url, as_utc(row.expires_at)
        db.delete(row)
        db.commit()
        if expires_at < utcnow():
            raise InvalidState("State expired")
        return name, return_url

    async def create_connection(self, name: str, code: str) -> Connection:
        if not code:
            raise InvalidInput("Missing authorization code")
        now = utcnow()
        access, refresh = tokens_from_grant(await self.provider.exchange_code(code), now)
        if refresh is None:
            raise InvalidInput("Provider did not issue a refresh token; offline_access scope is required")

        metadata = await self.provider.get_metadata(access.secret)
        info = await self.provider.get_user_info(access.secret)
        provider = metadata.get("provider") or {}
        provider_name = provider.get("display_name") or provider.get("provider_id") or ""
        accounts, cards, sources = await self.fetcher.fetch_sources(access.secret, name, provider_name)
        accounts, cards = attach_balances(accounts, cards, await self.fetcher.fetch_balances(access.secret, sources))

        conn = self.store.upsert(
            name,
            full_name=info.get("full_name"),
            provider_id=provider.get("provider_id"),
            provider_display_name=provider.get("display_name"),
            provider_logo_uri=provider.get("logo_uri"),
            consent_status=metadata.get("consent_status"),
            consent_expires_at=metadata.get("consent_expires_at"),
            accounts=accounts,
            cards=cards,
            last_synced=now,
            **encrypted_fields(access, refresh),
        )
        logger.info(
            f"Connected with {len(accounts)} account(s) and {len(cards)} card(s)",
            extra={"connection": name, "operation": "connect"},
        )
        return conn

    def list_connections(self) -> List[ConnectionOut]:
        return [
            ConnectionOut(
                name=conn.name,
                lastSynced=_millis(conn.last_synced),
                expiresAt=_millis(conn.refresh_token_expires_at),
                provider={"name": conn.provider_display_name, "logoURL": conn.provider_logo_uri},
            )
            for conn in self.store.list()
        ]

    def delete_connection(self, name: str) -> bool:
        return self.store.delete(name)
