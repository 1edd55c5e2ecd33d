from datetime import timedelta

import pytest

from ledgersync import provider_mock
from ledgersync.db import utcnow
from ledgersync.fetcher import TransactionSourceFetcher, attach_balances, normalise_balance
from ledgersync.provider_client import ProviderClient

TOKEN = "at_test"


@pytest.fixture
def fetcher():
    return TransactionSourceFetcher(ProviderClient())


def test_card_with_negative_available_is_flipped():
    assert normalise_balance("card", {"available": -50, "current": 50}) == -50


def test_non_card_is_never_flipped():
    assert normalise_balance("account", {"available": -50, "current": 50}) == 50
    assert normalise_balance("account", {"available": -20, "current": -20}) == -20


def test_card_with_positive_available_keeps_sign():
    assert normalise_balance("card", {"available": 950, "current": 50}) == 50
    assert normalise_balance("card", {"current": 50}) == 50


@pytest.mark.asyncio
async def test_fetch_sources_merges_accounts_and_cards(fetcher):
    accounts, cards, sources = await fetcher.fetch_sources(TOKEN, "Acme Checking", "Mock Bank")

    assert [a["account_id"] for a in accounts] == ["acc-1"]
    assert [c["account_id"] for c in cards] == ["card-1"]
    assert [(s.type, s.sub_type, s.name) for s in sources] == [
        ("account", "TRANSACTION", "Current Account"),
        ("card", "CREDIT", "Credit Card"),
    ]
    assert all(s.connection_name == "Acme Checking" and s.provider == "Mock Bank" for s in sources)
    assert all(s.balance is None for s in sources)


@pytest.mark.asyncio
async def test_unsupported_cards_yield_empty_list(fetcher):
    provider_mock.mock_state["cards_supported"] = False

    accounts, cards, sources = await fetcher.fetch_sources(TOKEN, "Acme Checking", "Mock Bank")

    assert cards == []
    assert [s.type for s in sources] == ["account"]


@pytest.mark.asyncio
async def test_fetch_transactions_tags_status(fetcher):
    _, _, sources = await fetcher.fetch_sources(TOKEN, "Acme Checking", "Mock Bank")
    now = utcnow()

    txns = await fetcher.fetch_transactions(TOKEN, sources[0], now - timedelta(days=30), now)

    assert [t.status for t in txns] == ["cleared", "pending"]
    cleared, pending = txns
    assert cleared.external_id == "npt-acc-1-1"
    assert cleared.merchant_name == "Mock Coffee"
    assert pending.external_id is None


@pytest.mark.asyncio
async def test_fetch_balance_applies_card_rule(fetcher):
    _, _, sources = await fetcher.fetch_sources(TOKEN, "Acme Checking", "Mock Bank")
    account, card = sources

    assert await fetcher.fetch_balance(TOKEN, account) == 1250.0
    assert await fetcher.fetch_balance(TOKEN, card) == -50.0


@pytest.mark.asyncio
async def test_fetch_balances_tolerates_failures(fetcher):
    accounts, cards, sources = await fetcher.fetch_sources(TOKEN, "Acme Checking", "Mock Bank")
    missing = sources[0].model_copy(update={"account_id": "acc-gone"})

    balances = await fetcher.fetch_balances(TOKEN, [missing, sources[1]])

    assert balances == [None, -50.0]


def test_attach_balances_copies_snapshots():
    accounts = [{"account_id": "acc-1"}]
    cards = [{"account_id": "card-1"}]

    new_accounts, new_cards = attach_balances(accounts, cards, [1250.0, None])

    assert new_accounts == [{"account_id": "acc-1", "balance": 1250.0}]
    assert new_cards == [{"account_id": "card-1"}]
    assert "balance" not in accounts[0]
