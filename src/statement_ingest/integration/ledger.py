import asyncio
import os
from time import monotonic
from typing import Any

import httpx
from pydantic import ValidationError

from statement_ingest.errors import TransactionStoreError
from statement_ingest.logger import get_logger
from statement_ingest.models import Account, Category, StoredTransaction, TransactionCreate
from statement_ingest.stores.base import LedgerBackend

logger = get_logger(__name__)

DEFAULT_CATALOG_CACHE_TTL_SECONDS = 60.0


class _CatalogCache:
    def __init__(self, ttl: float) -> None:
        self.ttl = max(0.0, ttl)
        self.value: list[Any] | None = None
        self.expires_at = 0.0

    def get(self, *, allow_stale: bool = False) -> list[Any] | None:
        if self.value is None or self.ttl <= 0:
            return None
        if allow_stale:
            return self.value
        if monotonic() >= self.expires_at:
            return None
        return self.value

    def put(self, value: list[Any]) -> None:
        if self.ttl <= 0:
            return
        self.value = value
        self.expires_at = monotonic() + self.ttl


class LedgerClient(LedgerBackend):
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        catalog_cache_ttl: float = DEFAULT_CATALOG_CACHE_TTL_SECONDS,
        timeout: float = 30.0,
    ):
        self.base_url = (base_url or os.getenv("LEDGER_URL") or "").rstrip("/")
        self.token = token or os.getenv("LEDGER_TOKEN")
        self.headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self.timeout = timeout
        self._client = client
        self._client_lock = asyncio.Lock()
        self._cache_lock = asyncio.Lock()
        self._categories_cache = _CatalogCache(catalog_cache_ttl)
        self._accounts_cache = _CatalogCache(catalog_cache_ttl)

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.token)

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client

        async with self._client_lock:
            # Re-check: another task may have created it while we waited.
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient(timeout=self.timeout)
                self._client = client
            return client

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if not self.configured:
            raise TransactionStoreError("Ledger credentials missing")

        client = await self._get_client()
        try:
            response = await client.request(
                method,
                f"{self.base_url}{path}",
                headers=self.headers,
                **kwargs,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransactionStoreError(
                f"Ledger returned {exc.response.status_code} for {method} {path}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransactionStoreError(f"Ledger request {method} {path} failed: {exc}") from exc

        if response.status_code == 204 or not response.content:
            return None
        return response.json().get("data")

    async def _get_catalog(self, path: str, cache: _CatalogCache) -> list[dict[str, Any]]:
        async with self._cache_lock:
            cached = cache.get()
            if cached is not None:
                return cached

            try:
                items = await self._request("GET", path) or []
            except TransactionStoreError as exc:
                stale = cache.get(allow_stale=True)
                if stale is not None:
                    logger.warning("[LEDGER] Refresh of %s failed, serving cached copy: %s", path, exc)
                    return stale
                raise
            cache.put(items)
            return items

    async def get_categories(self) -> list[Category]:
        raw = await self._get_catalog("/api/v1/categories", self._categories_cache)
        return _parse_items(Category, raw, "category")

    async def get_accounts(self) -> list[Account]:
        raw = await self._get_catalog("/api/v1/accounts", self._accounts_cache)
        return _parse_items(Account, raw, "account")

    async def get_recent_transactions(self, limit: int) -> list[StoredTransaction]:
        if limit <= 0:
            return []
        raw = await self._request(
            "GET",
            "/api/v1/transactions",
            params={"limit": limit, "order": "desc"},
        )
        return _parse_items(StoredTransaction, raw or [], "transaction")

    async def create_transaction(self, payload: TransactionCreate) -> StoredTransaction:
        data = await self._request(
            "POST",
            "/api/v1/transactions",
            json=payload.model_dump(mode="json", by_alias=True),
        )
        try:
            return StoredTransaction.model_validate(data)
        except ValidationError as exc:
            raise TransactionStoreError("Ledger returned an unreadable transaction") from exc

    async def update_transaction(self, transaction_id: str, fields: dict[str, Any]) -> None:
        await self._request("PATCH", f"/api/v1/transactions/{transaction_id}", json=fields)


def _parse_items(model: Any, raw_items: list[dict[str, Any]], label: str) -> list[Any]:
    items = []
    for raw in raw_items:
        try:
            items.append(model.model_validate(raw))
        except ValidationError:
            logger.warning("[LEDGER] Skipping unreadable %s: %s", label, raw)
    return items
