import logging
from dataclasses import asdict, dataclass
from datetime import tzinfo
from typing import Optional

from dateutil import tz
from dateutil.parser import isoparse

from ledgersync.ledger_client import LedgerClient
from ledgersync.schemas import TransactionMessage
from ledgersync.settings import settings

logger = logging.getLogger(__name__)

PENDING_DESCRIPTION_SUFFIX = " - Pending"
PENDING_EXTERNAL_ID_SUFFIX = "-pending"


@dataclass
class LedgerTransaction:
    date: str
    payee: str
    amount: float
    currency: str
    asset_id: int
    status: str = "cleared"
    notes: Optional[str] = None
    category_id: Optional[int] = None
    external_id: Optional[str] = None

    def to_payload(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


class PendingCategory:
    """Id of the synthetic category that tags pending transactions.

    Resolved once at startup; never looked up per message.
    """

    def __init__(self, client: LedgerClient, name: str = None):
        self.client = client
        self.name = name or settings.PENDING_CATEGORY_NAME
        self.id: Optional[int] = None

    async def resolve(self) -> int:
        for category in await self.client.list_categories():
            if category.get("name") == self.name:
                self.id = category["id"]
                break
        else:
            self.id = await self.client.create_category(self.name, "Transactions that have not cleared yet")
            logger.info(f"Created pending category {self.id}", extra={"operation": "category_create"})
        return self.id


def ledger_timezone(name: str = None) -> tzinfo:
    zone = tz.gettz(name or settings.LEDGER_TIMEZONE)
    if zone is None:
        raise ValueError(f"Unknown timezone {name or settings.LEDGER_TIMEZONE!r}")
    return zone


def to_ledger_date(timestamp: str, zone: tzinfo) -> str:
    # The ledger stores dates only, in the user's local timezone.
    parsed = isoparse(timestamp)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz.UTC)
    return parsed.astimezone(zone).date().isoformat()


def transform(
    transaction: TransactionMessage, asset_id: int, pending_category_id: Optional[int], zone: tzinfo
) -> LedgerTransaction:
    result = LedgerTransaction(
        date=to_ledger_date(transaction.timestamp, zone),
        payee=transaction.description,
        amount=transaction.amount,
        currency=transaction.currency.lower(),
        asset_id=asset_id,
        notes=transaction.merchant_name,
        external_id=transaction.external_id,
    )
    if transaction.status == "pending":
        # The ledger has no pending status; a suffixed external id keeps the
        # placeholder from colliding with the cleared record later on.
        result.payee = f"{result.payee}{PENDING_DESCRIPTION_SUFFIX}"
        result.category_id = pending_category_id
        if result.external_id:
            result.external_id = f"{result.external_id}{PENDING_EXTERNAL_ID_SUFFIX}"
    return result


class Inserter:
    """Inserts transactions one per request.

    The ledger drops a whole batch when skip_duplicates meets a duplicate it
    cannot resolve, so batches always hold a single transaction.
    """

    def __init__(self, client: LedgerClient):
        self.client = client

    async def insert(self, transaction: LedgerTransaction, pending: bool, source_key: str = None) -> list:
        skip_duplicates = bool(transaction.external_id)
        if not skip_duplicates:
            logger.warning(
                "Transaction has no external id, duplicate detection disabled",
                extra={"source": source_key, "operation": "insert"},
            )
        cleared = not pending
        return await self.client.insert_transactions(
            [transaction.to_payload()],
            apply_rules=cleared,
            skip_duplicates=skip_duplicates,
            check_for_recurring=cleared,
            skip_balance_update=cleared,
        )
