import pytest

from ledgersync.assets import AssetCache, AssetKey, AssetReconciler, asset_key_for_asset, asset_key_for_source
from ledgersync.schemas import SourceMessage


def card_source(balance=None):
    return SourceMessage(
        account_id="card-1",
        name="Credit Card",
        connection_name="Acme Checking",
        type="card",
        sub_type="CREDIT",
        provider="Mock Bank",
        currency="GBP",
        balance=balance,
    )


EXISTING_ASSET = {
    "id": 5,
    "name": "Credit Card",
    "type_name": "credit",
    "subtype_name": "CREDIT",
    "currency": "gbp",
    "institution_name": "Mock Bank",
}


def test_source_and_listing_produce_the_same_key():
    assert asset_key_for_source(card_source()) == asset_key_for_asset(EXISTING_ASSET)
    assert asset_key_for_source(card_source()) == AssetKey("Mock Bank", "Credit Card", "credit", "CREDIT", "gbp")


def test_cache_keeps_both_directions():
    cache = AssetCache()
    cache.seed([EXISTING_ASSET])
    key = asset_key_for_asset(EXISTING_ASSET)

    assert cache.get(key) == 5
    assert cache.key_for(5) == key
    assert key in cache
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_cache_miss_creates_asset_once(ledger):
    reconciler = AssetReconciler(ledger, AssetCache())
    await reconciler.load()

    first = await reconciler.reconcile(card_source())
    second = await reconciler.reconcile(card_source())

    assert first == second == 42
    assert len(ledger.created_assets) == 1
    # Absent balance defaults to zero on creation, no extra balance update
    assert ledger.created_assets[0]["balance"] == 0
    assert ledger.balance_updates == []
    assert reconciler.cache.get(asset_key_for_source(card_source())) == 42


@pytest.mark.asyncio
async def test_creation_carries_balance(ledger):
    reconciler = AssetReconciler(ledger, AssetCache())

    await reconciler.reconcile(card_source(balance=-50.0))

    assert ledger.created_assets[0]["balance"] == -50.0
    assert ledger.balance_updates == []


@pytest.mark.asyncio
async def test_known_asset_gets_balance_update_only_when_balance_present(ledger):
    ledger.assets.append(EXISTING_ASSET)
    reconciler = AssetReconciler(ledger, AssetCache())
    await reconciler.load()

    assert await reconciler.reconcile(card_source()) == 5
    assert ledger.balance_updates == []

    assert await reconciler.reconcile(card_source(balance=-50.0)) == 5
    assert ledger.balance_updates == [(5, -50.0, "GBP")]
    assert ledger.created_assets == []
