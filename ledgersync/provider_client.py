from datetime import datetime
from typing import List, Optional
from urllib.parse import urlencode

import httpx

from ledgersync.errors import UpstreamAPIError
from ledgersync.settings import settings

ACCOUNTS = "accounts"
CARDS = "cards"

class ProviderClient:
    """Async client for the open-banking provider's auth and Data API."""

    service = "provider"

    def __init__(self):
        self.auth_origin = settings.PROVIDER_AUTH_ORIGIN
        self.api_origin = settings.PROVIDER_API_ORIGIN
        self.client_id = settings.PROVIDER_CLIENT_ID
        self.client_secret = settings.PROVIDER_CLIENT_SECRET
        self.redirect_uri = settings.PROVIDER_REDIRECT_URI
        self.timeout = settings.HTTP_TIMEOUT_SECONDS

    def _get_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout)

    def auth_url(self, state: str) -> str:
        query = urlencode({
            "response_type": "code",
            "client_id": self.client_id,
            "scope": settings.PROVIDER_SCOPES,
            "redirect_uri": self.redirect_uri,
            "providers": settings.PROVIDER_PROVIDERS,
            "state": state,
        })
        return f"{self.auth_origin}/?{query}"

    def _check(self, resp: httpx.Response) -> None:
        if resp.is_success:
            return
        raise UpstreamAPIError(self.service, resp.status_code, resp.text[:200])

    async def _token_request(self, data: dict) -> dict:
        body = {"client_id": self.client_id, "client_secret": self.client_secret, **data}
        async with self._get_client() as client:
            resp = await client.post(
                f"{self.auth_origin}/connect/token",
                json=body,
                headers={"Accept": "application/json"},
            )
            self._check(resp)
            return resp.json()

    async def exchange_code(self, code: str) -> dict:
        return await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        })

    async def refresh_access_token(self, refresh_token: str) -> dict:
        return await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    async def _get(self, access_token: str, path: str, params: Optional[dict] = None) -> httpx.Response:
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        async with self._get_client() as client:
            return await client.get(f"{self.api_origin}/data/v1{path}", params=params, headers=headers)

    async def _results(self, access_token: str, path: str, params: Optional[dict] = None) -> list:
        resp = await self._get(access_token, path, params)
        self._check(resp)
        return resp.json().get("results", [])

    async def get_metadata(self, access_token: str) -> dict:
        results = await self._results(access_token, "/me")
        return results[0] if results else {}

    async def get_user_info(self, access_token: str) -> dict:
        results = await self._results(access_token, "/info")
        return results[0] if results else {}

    async def list_sources(self, access_token: str, kind: str) -> List[dict]:
        resp = await self._get(access_token, f"/{kind}")
        if resp.status_code == 501:
            # Provider does not support this source kind for the connection.
            return []
        self._check(resp)
        return resp.json().get("results", [])

    async def get_balance(self, access_token: str, kind: str, account_id: str) -> dict:
        results = await self._results(access_token, f"/{kind}/{account_id}/balance")
        if not results:
            raise UpstreamAPIError(self.service, 200, f"empty balance for {kind}/{account_id}")
        return results[0]

    async def get_transactions(
        self, access_token: str, kind: str, account_id: str, date_from: datetime, date_to: datetime
    ) -> List[dict]:
        params = {"from": date_from.isoformat(), "to": date_to.isoformat()}
        return await self._results(access_token, f"/{kind}/{account_id}/transactions", params)

    async def get_pending_transactions(
        self, access_token: str, kind: str, account_id: str, date_from: datetime, date_to: datetime
    ) -> List[dict]:
        params = {"from": date_from.isoformat(), "to": date_to.isoformat()}
        return await self._results(access_token, f"/{kind}/{account_id}/transactions/pending", params)
