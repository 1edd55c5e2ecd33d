import logging
from typing import Dict, Iterable, NamedTuple, Optional

from ledgersync.ledger_client import LedgerClient
from ledgersync.publisher import transport_key
from ledgersync.schemas import SourceMessage

logger = logging.getLogger(__name__)

ASSET_TYPE_BY_SOURCE_TYPE = {"account": "cash", "card": "credit"}


class AssetKey(NamedTuple):
    institution: str
    name: str
    type_name: str
    subtype_name: str
    currency: str


def asset_key_for_source(source: SourceMessage) -> AssetKey:
    return AssetKey(
        institution=source.provider or "",
        name=source.name,
        type_name=ASSET_TYPE_BY_SOURCE_TYPE[source.type],
        subtype_name=source.sub_type or "",
        currency=source.currency.lower(),
    )


def asset_key_for_asset(asset: dict) -> AssetKey:
    return AssetKey(
        institution=asset.get("institution_name") or "",
        name=asset.get("name") or "",
        type_name=asset.get("type_name") or "",
        subtype_name=asset.get("subtype_name") or "",
        currency=(asset.get("currency") or "").lower(),
    )


class AssetCache:
    """Process-local mirror of ledger assets: AssetKey <-> asset id.

    Only the message-handling path writes to it, one message at a time.
    """

    def __init__(self):
        self._ids: Dict[AssetKey, int] = {}
        self._keys: Dict[int, AssetKey] = {}

    def seed(self, assets: Iterable[dict]) -> None:
        self._ids.clear()
        self._keys.clear()
        for asset in assets:
            self.put(asset_key_for_asset(asset), asset["id"])

    def get(self, key: AssetKey) -> Optional[int]:
        return self._ids.get(key)

    def put(self, key: AssetKey, asset_id: int) -> None:
        self._ids[key] = asset_id
        self._keys[asset_id] = key

    def key_for(self, asset_id: int) -> Optional[AssetKey]:
        return self._keys.get(asset_id)

    def __contains__(self, key: AssetKey) -> bool:
        return key in self._ids

    def __len__(self) -> int:
        return len(self._ids)


class AssetReconciler:
    def __init__(self, client: LedgerClient, cache: AssetCache):
        self.client = client
        self.cache = cache

    async def load(self) -> int:
        self.cache.seed(await self.client.list_assets())
        logger.info(f"Seeded asset cache with {len(self.cache)} asset(s)", extra={"operation": "asset_seed"})
        return len(self.cache)

    async def reconcile(self, source: SourceMessage) -> int:
        """Returns the ledger asset id for the source, creating the asset on a cache miss."""
        key = asset_key_for_source(source)
        asset_id = self.cache.get(key)

        if asset_id is not None:
            if source.balance is not None:
                await self.client.update_asset_balance(asset_id, source.balance, source.currency)
            return asset_id

        created = await self.client.create_asset(
            name=key.name,
            type_name=key.type_name,
            subtype_name=key.subtype_name,
            balance=source.balance if source.balance is not None else 0,
            currency=source.currency,
            institution_name=key.institution,
        )
        asset_id = created["id"]
        self.cache.put(key, asset_id)
        logger.info(
            f"Created asset {asset_id}",
            extra={"source": transport_key(source), "operation": "asset_create"},
        )
        return asset_id
