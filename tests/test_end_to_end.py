import logging
from datetime import timedelta

import pytest

from ledgersync import provider_mock
from ledgersync.consumer import build_handler
from ledgersync.db import as_utc, utcnow
from ledgersync.main import build_services


class LoopbackProducer:
    """Delivers each record straight to the consumer handler, like a topic with one partition."""

    def __init__(self, handler):
        self.handler = handler
        self.keys = []

    async def send_and_wait(self, topic, value=None, key=None, headers=None):
        self.keys.append(key)
        await self.handler.handle(value)


@pytest.mark.asyncio
async def test_scheduled_sync_reaches_ledger(db, ledger, make_connection, store, caplog, monkeypatch):
    provider_mock.mock_state["cards_supported"] = False
    handler = build_handler(ledger)
    await handler.startup()
    services = build_services(LoopbackProducer(handler))
    t0 = utcnow() - timedelta(hours=1)
    make_connection("Acme Checking", last_synced=t0)
    fetch_ends = []
    fetch_transactions = services.orchestrator.fetcher.fetch_transactions

    async def recording_fetch(token, source, date_from, date_to):
        fetch_ends.append(date_to)
        return await fetch_transactions(token, source, date_from, date_to)

    monkeypatch.setattr(services.orchestrator.fetcher, "fetch_transactions", recording_fetch)

    with caplog.at_level(logging.WARNING):
        outcomes = await services.orchestrator.scheduled_sync()

    assert outcomes == {"Acme Checking": "ok"}

    # One asset, two separate single-transaction inserts
    assert len(ledger.created_assets) == 1
    asset_id = ledger.created_assets[0]["id"]
    assert ledger.created_assets[0]["balance"] == 1250.0
    cleared_call, pending_call = ledger.insert_calls
    assert len(cleared_call["transactions"]) == len(pending_call["transactions"]) == 1

    cleared = cleared_call["transactions"][0]
    assert cleared["external_id"] == "npt-acc-1-1"
    assert cleared["amount"] == -12.5
    assert cleared["asset_id"] == asset_id
    assert cleared_call["skip_duplicates"] is True

    pending = pending_call["transactions"][0]
    assert "external_id" not in pending
    assert pending["payee"].endswith("- Pending")
    assert pending_call["skip_duplicates"] is False
    assert any("no external id" in r.getMessage() for r in caplog.records)

    # last_synced moves to the end of the fetched window
    assert len(set(fetch_ends)) == 1
    assert as_utc(store.get("Acme Checking").last_synced) == fetch_ends[0]


@pytest.mark.asyncio
async def test_failed_insert_keeps_last_synced(db, ledger, make_connection, store, monkeypatch):
    provider_mock.mock_state["cards_supported"] = False
    handler = build_handler(ledger)
    await handler.startup()
    services = build_services(LoopbackProducer(handler))
    t0 = utcnow() - timedelta(hours=1)
    make_connection("Acme Checking", last_synced=t0)

    async def broken_insert(*args, **kwargs):
        raise RuntimeError("ledger down")

    monkeypatch.setattr(ledger, "insert_transactions", broken_insert)
    outcomes = await services.orchestrator.scheduled_sync()

    assert outcomes == {"Acme Checking": "failed"}
    assert as_utc(store.get("Acme Checking").last_synced) == t0


@pytest.mark.asyncio
async def test_resync_of_same_window_does_not_duplicate(db, ledger, make_connection):
    handler = build_handler(ledger)
    await handler.startup()
    services = build_services(LoopbackProducer(handler))
    make_connection("Acme Checking", last_synced=utcnow() - timedelta(hours=1))

    await services.orchestrator.backfill_sync()
    await services.orchestrator.backfill_sync()

    # Two sources, each created once
    assert len(ledger.created_assets) == 2
    stable = [t["external_id"] for t in ledger.transactions if "external_id" in t]
    assert sorted(stable) == ["npt-acc-1-1", "npt-card-1-1"]
