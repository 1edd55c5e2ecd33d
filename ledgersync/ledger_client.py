from typing import List, Optional

import httpx

from ledgersync.errors import UpstreamAPIError
from ledgersync.settings import settings

API_VERSION = "v1"

class LedgerClient:
    """Async client for the budgeting ledger's REST API."""

    service = "ledger"

    def __init__(self, access_token: str = None, api_origin: str = None):
        self.base_url = f"{api_origin or settings.LEDGER_API_ORIGIN}/{API_VERSION}"
        self.access_token = access_token if access_token is not None else settings.LEDGER_ACCESS_TOKEN
        self.timeout = settings.HTTP_TIMEOUT_SECONDS

    def _get_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout)

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict:
        headers = {"Authorization": f"Bearer {self.access_token}", "Accept": "application/json"}
        async with self._get_client() as client:
            resp = await client.request(method, f"{self.base_url}{path}", json=json, headers=headers)
        if not resp.is_success:
            raise UpstreamAPIError(self.service, resp.status_code, resp.text[:200])
        body = resp.json()
        # The ledger reports some validation failures as 200 with an "error" field.
        if isinstance(body, dict) and body.get("error"):
            raise UpstreamAPIError(self.service, resp.status_code, str(body["error"]))
        return body

    async def list_assets(self) -> List[dict]:
        return (await self._request("GET", "/assets")).get("assets", [])

    async def create_asset(
        self,
        name: str,
        type_name: str,
        subtype_name: str,
        balance: float,
        currency: str,
        institution_name: str,
    ) -> dict:
        return await self._request("POST", "/assets", json={
            "name": name,
            "display_name": name,
            "type_name": type_name,
            "subtype_name": subtype_name,
            "balance": balance,
            "currency": currency.lower(),
            "institution_name": institution_name,
        })

    async def update_asset_balance(self, asset_id: int, balance: float, currency: str) -> dict:
        return await self._request("PUT", f"/assets/{asset_id}", json={
            "balance": balance,
            "currency": currency.lower(),
        })

    async def list_categories(self) -> List[dict]:
        return (await self._request("GET", "/categories")).get("categories", [])

    async def create_category(self, name: str, description: str = "") -> int:
        body = await self._request("POST", "/categories", json={
            "name": name,
            "description": description,
            "exclude_from_budget": True,
            "exclude_from_totals": False,
        })
        return body["category_id"]

    async def insert_transactions(
        self,
        transactions: List[dict],
        apply_rules: bool,
        skip_duplicates: bool,
        check_for_recurring: bool,
        skip_balance_update: bool,
    ) -> List[int]:
        body = await self._request("POST", "/transactions", json={
            "transactions": transactions,
            "apply_rules": apply_rules,
            "skip_duplicates": skip_duplicates,
            "check_for_recurring": check_for_recurring,
            "debit_as_negative": True,
            "skip_balance_update": skip_balance_update,
        })
        return body.get("ids", [])
