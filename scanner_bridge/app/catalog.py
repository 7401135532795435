from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .jsonlog import json_log


class CatalogError(Exception):
    pass


class CatalogProduct(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    id: str
    name: str
    selling_price: Decimal = Field(alias="sellingPrice")
    stock: Optional[Decimal] = None
    sku: Optional[str] = None


class CatalogClient:
    """Product search against the POS API (`GET /sales/search-products`)."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None

    async def search(self, query: str) -> List[CatalogProduct]:
        url = f"{self.base_url}/sales/search-products"
        try:
            resp = await self._client.get(url, params={"query": query})
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as exc:
            json_log("warning", "scanner.catalog.request_failed", url=url, query=query, error=str(exc))
            raise CatalogError(str(exc)) from exc
        except ValueError as exc:
            raise CatalogError("invalid catalog response") from exc

        rows = body.get("products") if isinstance(body, dict) else None
        if not isinstance(rows, list):
            raise CatalogError("invalid catalog response")
        try:
            return [CatalogProduct.model_validate(r) for r in rows]
        except ValidationError as exc:
            raise CatalogError("invalid product record") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
