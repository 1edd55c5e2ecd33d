import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from ledgersync.provider_client import ACCOUNTS, CARDS, ProviderClient
from ledgersync.schemas import SourceMessage, TransactionMessage

logger = logging.getLogger(__name__)

KIND_BY_TYPE = {"account": ACCOUNTS, "card": CARDS}


def source_from_account(connection_name: str, provider_name: str, account: dict) -> SourceMessage:
    return SourceMessage(
        account_id=account["account_id"],
        name=account.get("display_name") or account["account_id"],
        connection_name=connection_name,
        type="account",
        sub_type=account.get("account_type", ""),
        provider=provider_name,
        currency=account["currency"],
    )


def source_from_card(connection_name: str, provider_name: str, card: dict) -> SourceMessage:
    return SourceMessage(
        account_id=card["account_id"],
        name=card.get("display_name") or card["account_id"],
        connection_name=connection_name,
        type="card",
        sub_type=card.get("card_type", ""),
        provider=provider_name,
        currency=card["currency"],
    )


def transaction_from_provider(item: dict, status: str) -> TransactionMessage:
    meta = item.get("meta") or {}
    return TransactionMessage(
        timestamp=item["timestamp"],
        description=item.get("description", ""),
        amount=item["amount"],
        currency=item["currency"],
        status=status,
        transaction_type=item.get("transaction_type", ""),
        transaction_category=item.get("transaction_category", ""),
        transaction_classification=item.get("transaction_classification") or [],
        normalised_provider_transaction_id=(
            item.get("normalised_provider_transaction_id") or meta.get("provider_transaction_id")
        ),
        merchant_name=item.get("merchant_name"),
    )


class TransactionSourceFetcher:
    def __init__(self, provider: ProviderClient):
        self.provider = provider

    async def fetch_sources(
        self, access_token: str, connection_name: str, provider_name: str
    ) -> Tuple[List[dict], List[dict], List[SourceMessage]]:
        """Returns raw accounts, raw cards and the merged source list."""
        accounts, cards = await asyncio.gather(
            self.provider.list_sources(access_token, ACCOUNTS),
            self.provider.list_sources(access_token, CARDS),
        )
        sources = [source_from_account(connection_name, provider_name, a) for a in accounts]
        sources += [source_from_card(connection_name, provider_name, c) for c in cards]
        return accounts, cards, sources

    async def fetch_transactions(
        self, access_token: str, source: SourceMessage, date_from: datetime, date_to: datetime
    ) -> List[TransactionMessage]:
        kind = KIND_BY_TYPE[source.type]
        # Status is not part of the provider payload; it is implied by the endpoint.
        cleared, pending = await asyncio.gather(
            self.provider.get_transactions(access_token, kind, source.account_id, date_from, date_to),
            self.provider.get_pending_transactions(access_token, kind, source.account_id, date_from, date_to),
        )
        return (
            [transaction_from_provider(t, "cleared") for t in cleared]
            + [transaction_from_provider(t, "pending") for t in pending]
        )

    async def fetch_balance(self, access_token: str, source: SourceMessage) -> float:
        balance = await self.provider.get_balance(access_token, KIND_BY_TYPE[source.type], source.account_id)
        return normalise_balance(source.type, balance)

    async def fetch_balances(self, access_token: str, sources: Sequence[SourceMessage]) -> List[Optional[float]]:
        """Balance per source, None where the provider call failed."""
        results = await asyncio.gather(
            *(self.fetch_balance(access_token, source) for source in sources),
            return_exceptions=True,
        )
        balances = []
        for source, result in zip(sources, results):
            if isinstance(result, Exception):
                logger.warning(
                    f"Balance fetch failed: {result!r}",
                    extra={"connection": source.connection_name, "source": source.account_id, "operation": "balance"},
                )
                balances.append(None)
            else:
                balances.append(result)
        return balances


def attach_balances(
    accounts: List[dict], cards: List[dict], balances: Sequence[Optional[float]]
) -> Tuple[List[dict], List[dict]]:
    """Copies of the raw snapshots with `balance` set, in fetch_sources order."""
    snapshot = [
        dict(raw, balance=balance) if balance is not None else dict(raw)
        for raw, balance in zip(accounts + cards, balances)
    ]
    return snapshot[:len(accounts)], snapshot[len(accounts):]


def normalise_balance(source_type: str, balance: dict) -> float:
    """Current balance with the card sign convention applied.

    Some providers report card balances as positive amounts owed while the
    available balance is negative; the current balance takes the sign of debt.
    """
    current = float(balance["current"])
    available = balance.get("available")
    if source_type == "card" and available is not None and float(available) < 0:
        return -current
    return current
