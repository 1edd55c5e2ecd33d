import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from ledgersync.db import as_utc, utcnow
from ledgersync.errors import SyncIncomplete
from ledgersync.fetcher import TransactionSourceFetcher, attach_balances
from ledgersync.publisher import Publisher, transport_key
from ledgersync.schemas import SourceMessage
from ledgersync.settings import settings
from ledgersync.store import ConnectionStore
from ledgersync.tokens import TokenLifecycleManager

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Drives fan-out over connections and their sources.

    Every entry point reduces to sync_connection(name, since, force_balance).
    The window starts at the caller's `since`, else at the connection's own
    last_synced, so a connection that failed last cycle gets a wider window
    on the next one.
    """

    def __init__(
        self,
        store: ConnectionStore,
        tokens: TokenLifecycleManager,
        fetcher: TransactionSourceFetcher,
        publisher: Publisher,
    ):
        self.store = store
        self.tokens = tokens
        self.fetcher = fetcher
        self.publisher = publisher
        self._locks: Dict[str, asyncio.Lock] = {}

    def backfill_since(self, now: Optional[datetime] = None) -> datetime:
        return (now or utcnow()) - timedelta(days=settings.BACKFILL_DAYS)

    async def sync_connection(
        self, name: str, since: Optional[datetime] = None, force_balance: bool = False
    ) -> Optional[dict]:
        """Syncs one connection. Returns None if a run for it is already in flight."""
        lock = self._locks.setdefault(name, asyncio.Lock())
        if lock.locked():
            logger.warning("Sync already running, skipping", extra={"connection": name, "operation": "sync"})
            return None
        async with lock:
            return await self._sync_connection(name, since, force_balance)

    async def _sync_connection(self, name: str, since: Optional[datetime], force_balance: bool) -> dict:
        connection = self.store.require(name)
        token = await self.tokens.get_usable_access_token(connection)

        until = utcnow()
        window_start = as_utc(since) or as_utc(connection.last_synced) or self.backfill_since(until)

        accounts, cards, sources = await self.fetcher.fetch_sources(
            token.secret, name, connection.provider_display_name or connection.provider_id or ""
        )
        balances = await self.fetcher.fetch_balances(token.secret, sources)
        accounts, cards = attach_balances(accounts, cards, balances)
        self.store.update(name, accounts=accounts, cards=cards)

        results = await asyncio.gather(
            *(
                self._sync_source(token.secret, source, window_start, until, force_balance, balance)
                for source, balance in zip(sources, balances)
            ),
            return_exceptions=True,
        )

        stats = {"sources": len(sources), "published": 0, "transactions": 0, "failed_sources": []}
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Source sync failed: {result!r}",
                    extra={"connection": name, "source": transport_key(source), "operation": "sync_source"},
                )
                stats["failed_sources"].append(transport_key(source))
                continue
            published, count = result
            stats["published"] += int(published)
            stats["transactions"] += count

        if stats["failed_sources"]:
            # Partial success must not mark the window as synced.
            raise SyncIncomplete(name, stats["failed_sources"])

        self.store.update(name, last_synced=until)
        logger.info(
            f"Synced {stats['transactions']} transaction(s) from {stats['sources']} source(s)",
            extra={"connection": name, "operation": "sync"},
        )
        return stats

    async def _sync_source(
        self,
        access_token: str,
        source: SourceMessage,
        since: datetime,
        until: datetime,
        force_balance: bool,
        balance: Optional[float] = None,
    ):
        transactions = await self.fetcher.fetch_transactions(access_token, source, since, until)
        if force_balance or transactions:
            if balance is None:
                balance = await self.fetcher.fetch_balance(access_token, source)
            source = source.model_copy(update={"balance": balance})
        published = await self.publisher.publish(source, transactions)
        return published, len(transactions)

    async def sync_all(self, since: Optional[datetime] = None, force_balance: bool = False) -> Dict[str, str]:
        names = self.store.names()
        results = await asyncio.gather(
            *(self.sync_connection(name, since, force_balance) for name in names),
            return_exceptions=True,
        )
        outcomes = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.error(f"Connection sync failed: {result!r}", extra={"connection": name, "operation": "sync"})
                outcomes[name] = "failed"
            elif result is None:
                outcomes[name] = "skipped"
            else:
                outcomes[name] = "ok"
        return outcomes

    async def scheduled_sync(self) -> Dict[str, str]:
        logger.info("Starting scheduled sync", extra={"operation": "scheduled_sync"})
        return await self.sync_all()

    async def backfill_sync(self) -> Dict[str, str]:
        logger.info("Starting backfill sync", extra={"operation": "backfill_sync"})
        return await self.sync_all(since=self.backfill_since(), force_balance=True)

    async def backfill_connection(self, name: str) -> Optional[dict]:
        try:
            return await self.sync_connection(name, since=self.backfill_since(), force_balance=True)
        except Exception as e:
            logger.error(f"Initial backfill failed: {e!r}", extra={"connection": name, "operation": "backfill"})
            return None
