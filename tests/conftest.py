import pytest
import httpx
from datetime import timedelta
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ledgersync.settings import settings

# Point the provider client at the in-process mock before anything reads settings.
settings.PROVIDER_AUTH_ORIGIN = "http://provider.test/provider"
settings.PROVIDER_API_ORIGIN = "http://provider.test/provider"
settings.SCHEDULER_ENABLED = False
settings.PROVIDER_MOCK_ENABLED = True

import ledgersync.db
import ledgersync.models # Ensure models are loaded
from ledgersync import provider_mock
from ledgersync.db import Base, get_db, utcnow
from ledgersync.main import app as fastapi_app, build_services
from ledgersync.provider_client import ProviderClient
from ledgersync.store import ConnectionStore
from ledgersync.tokens import Token, encrypted_fields

# Use in-memory SQLite with StaticPool so all connections share the same memory DB
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# ConnectionStore and get_db both resolve db.SessionLocal at call time.
ledgersync.db.SessionLocal = TestingSessionLocal


class RecordingProducer:
    """Stands in for AIOKafkaProducer; keeps every sent record."""

    def __init__(self):
        self.sent = []

    async def send_and_wait(self, topic, value=None, key=None, headers=None):
        self.sent.append({"topic": topic, "value": value, "key": key, "headers": headers})


@pytest.fixture(autouse=True)
def _provider_transport(monkeypatch):
    provider_mock.reset_mock_state()

    def mock_get_client(self):
        # Route provider traffic to the mock provider app instead of the network.
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=provider_mock.app),
            base_url="http://provider.test",
            timeout=self.timeout,
        )

    monkeypatch.setattr(ProviderClient, "_get_client", mock_get_client)


@pytest.fixture(scope="function")
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db):
    return ConnectionStore()


@pytest.fixture
def make_connection(store):
    def _make(name="Acme Checking", access_ttl=timedelta(hours=1), refresh_ttl=timedelta(days=90), **fields):
        now = utcnow()
        access = Token("at_existing", now + access_ttl)
        refresh = Token("rt_existing", now + refresh_ttl)
        fields.setdefault("provider_id", "mock")
        fields.setdefault("provider_display_name", "Mock Bank")
        fields.setdefault("accounts", [])
        fields.setdefault("cards", [])
        return store.upsert(name, **encrypted_fields(access, refresh), **fields)
    return _make


@pytest.fixture
def producer():
    return RecordingProducer()


@pytest.fixture
def services(db, producer):
    return build_services(producer)


@pytest.fixture
def client(db, services):
    def override_get_db():
        try:
            yield db
        finally:
            pass

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.state.services = services

    yield TestClient(fastapi_app)

    fastapi_app.dependency_overrides.clear()


class FakeLedger:
    """In-memory ledger with the LedgerClient interface.

    Mirrors the real skip_duplicates behaviour for single-transaction inserts.
    """

    def __init__(self, assets=None, categories=None):
        self.assets = list(assets or [])
        self.categories = list(categories or [])
        self.created_assets = []
        self.balance_updates = []
        self.insert_calls = []
        self.transactions = []
        self._next_asset_id = 42
        self._next_category_id = 7

    async def list_assets(self):
        return list(self.assets)

    async def create_asset(self, name, type_name, subtype_name, balance, currency, institution_name):
        asset = {
            "id": self._next_asset_id,
            "name": name,
            "type_name": type_name,
            "subtype_name": subtype_name,
            "balance": balance,
            "currency": currency.lower(),
            "institution_name": institution_name,
        }
        self._next_asset_id += 1
        self.assets.append(asset)
        self.created_assets.append(asset)
        return asset

    async def update_asset_balance(self, asset_id, balance, currency):
        self.balance_updates.append((asset_id, balance, currency))
        return {"id": asset_id, "balance": balance}

    async def list_categories(self):
        return list(self.categories)

    async def create_category(self, name, description=""):
        category_id = self._next_category_id
        self._next_category_id += 1
        self.categories.append({"id": category_id, "name": name})
        return category_id

    async def insert_transactions(self, transactions, apply_rules, skip_duplicates, check_for_recurring, skip_balance_update):
        self.insert_calls.append({
            "transactions": transactions,
            "apply_rules": apply_rules,
            "skip_duplicates": skip_duplicates,
            "check_for_recurring": check_for_recurring,
            "skip_balance_update": skip_balance_update,
        })
        ids = []
        for txn in transactions:
            known = {t.get("external_id") for t in self.transactions}
            if skip_duplicates and txn.get("external_id") in known:
                continue
            self.transactions.append(txn)
            ids.append(len(self.transactions))
        return ids


@pytest.fixture
def ledger():
    return FakeLedger()
