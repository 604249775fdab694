from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from ..config import Settings
from . import graphql_queries as queries
from .errors import CommerceUserError, ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 20


class CommerceBackend(ABC):
    """Catalog/cart operations the built-in capabilities are executed against.

    Implementations return normalized dicts (camelCase keys, the shape the
    assistant shows to the model), raise ``CommerceUserError`` for business
    errors and ``UpstreamError`` for transport failures.
    """

    @abstractmethod
    async def search_products(
        self, query: str, *, page_size: int, current_page: int, customer_token: str | None = None
    ) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_product(self, sku: str, *, customer_token: str | None = None) -> Dict[str, Any]: ...

    @abstractmethod
    async def create_cart(self, *, customer_token: str | None = None) -> str: ...

    @abstractmethod
    async def add_to_cart(
        self, cart_id: str, sku: str, quantity: float, *, customer_token: str | None = None
    ) -> Dict[str, Any]: ...

    @abstractmethod
    async def get_cart(self, cart_id: str, *, customer_token: str | None = None) -> Dict[str, Any]: ...

    @abstractmethod
    async def update_cart_item(
        self, cart_id: str, cart_item_id: str, quantity: float, *, customer_token: str | None = None
    ) -> Dict[str, Any]: ...

    @abstractmethod
    async def remove_cart_item(
        self, cart_id: str, cart_item_id: str, *, customer_token: str | None = None
    ) -> Dict[str, Any]: ...


class MagentoGraphQLBackend(CommerceBackend):
    """HTTP client for the Magento / Adobe Commerce GraphQL endpoint."""

    backend_name = "magento"

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        if not settings.magento_graphql_url:
            raise ConfigurationError("MAGENTO_GRAPHQL_URL is required for built-in tools")
        self._url = settings.magento_graphql_url
        self._api_token = settings.magento_api_token
        self._timeout = settings.http_timeout_seconds
        self._transport = transport
        self.mode = self._detect_mode(self._url)
        logger.info("Magento client initialized mode=%s url=%s", self.mode, self._url)

    @staticmethod
    def _detect_mode(url: str) -> str:
        if "commerce.adobe.com" in url.lower():
            return "saas"
        return "paas"

    def _headers(self, customer_token: str | None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.mode == "saas":
            if self._api_token:
                headers["X-Adobe-Commerce-API-Key"] = self._api_token
            if customer_token:
                headers["X-Customer-Token"] = customer_token
            return headers
        # Customer token takes precedence over the integration token
        token = customer_token or self._api_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def execute(
        self,
        document: str,
        variables: Dict[str, Any] | None = None,
        customer_token: str | None = None,
    ) -> Dict[str, Any]:
        payload = {"query": document, "variables": variables or {}}
        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=payload, headers=self._headers(customer_token))
                logger.info(
                    "magento.graphql status=%s customer_token=%s latency_ms=%.1f",
                    response.status_code,
                    bool(customer_token),
                    (time.perf_counter() - start) * 1000,
                )
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error("magento error url=%s status=%s", self._url, exc.response.status_code)
            raise UpstreamError(
                f"Magento API Error: {exc.response.status_code}",
                backend=self.backend_name,
                status_code=exc.response.status_code,
            ) from exc
        except httpx.RequestError as exc:
            logger.error("magento connection error url=%s error=%s", self._url, exc)
            raise UpstreamError(
                f"Cannot connect to Magento at {self._url}: {exc}",
                backend=self.backend_name,
            ) from exc
        except ValueError as exc:
            raise UpstreamError("Magento returned a non-JSON body", backend=self.backend_name) from exc

        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            messages = ", ".join(str(error.get("message", error)) for error in errors)
            logger.warning("magento graphql errors=%s", messages)
            raise CommerceUserError(f"GraphQL Error: {messages}")
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise UpstreamError("Magento response has no data", backend=self.backend_name)
        return data

    async def search_products(self, query, *, page_size, current_page, customer_token=None):
        data = await self.execute(
            queries.PRODUCT_SEARCH_QUERY,
            {
                "search": query,
                "pageSize": min(page_size, MAX_PAGE_SIZE),
                "currentPage": current_page,
            },
            customer_token,
        )
        products = data["products"]
        return {
            "products": [_normalize_product(item) for item in products.get("items") or []],
            "totalCount": products.get("total_count", 0),
            "pageInfo": products.get("page_info"),
        }

    async def get_product(self, sku, *, customer_token=None):
        data = await self.execute(queries.GET_PRODUCT_DETAILS_QUERY, {"sku": sku}, customer_token)
        items = data["products"].get("items") or []
        if not items:
            raise CommerceUserError(f'Product with SKU "{sku}" not found')
        item = items[0]
        product = _normalize_product(item)
        product["description"] = (item.get("description") or {}).get("html")
        product["mediaGallery"] = item.get("media_gallery") or []
        return product

    async def create_cart(self, *, customer_token=None):
        data = await self.execute(queries.CREATE_EMPTY_CART_MUTATION, {}, customer_token)
        return str(data["createEmptyCart"])

    async def add_to_cart(self, cart_id, sku, quantity, *, customer_token=None):
        data = await self.execute(
            queries.ADD_PRODUCTS_TO_CART_MUTATION,
            {"cartId": cart_id, "cartItems": [{"sku": sku, "quantity": quantity}]},
            customer_token,
        )
        result = data["addProductsToCart"]
        user_errors = result.get("user_errors") or []
        if user_errors:
            raise CommerceUserError(", ".join(error.get("message", "") for error in user_errors))
        return _normalize_cart(result["cart"])

    async def get_cart(self, cart_id, *, customer_token=None):
        data = await self.execute(queries.GET_CART_QUERY, {"cartId": cart_id}, customer_token)
        return _normalize_cart(data["cart"])

    async def update_cart_item(self, cart_id, cart_item_id, quantity, *, customer_token=None):
        data = await self.execute(
            queries.UPDATE_CART_ITEMS_MUTATION,
            {"cartId": cart_id, "cartItemId": cart_item_id, "quantity": quantity},
            customer_token,
        )
        return _normalize_cart(data["updateCartItems"]["cart"])

    async def remove_cart_item(self, cart_id, cart_item_id, *, customer_token=None):
        data = await self.execute(
            queries.REMOVE_ITEM_FROM_CART_MUTATION,
            {"cartId": cart_id, "cartItemId": cart_item_id},
            customer_token,
        )
        return _normalize_cart(data["removeItemFromCart"]["cart"])


def _normalize_product(item: Dict[str, Any]) -> Dict[str, Any]:
    minimum_price = (item.get("price_range") or {}).get("minimum_price") or {}
    final_price = minimum_price.get("final_price") or {}
    regular_price = minimum_price.get("regular_price") or {}
    image = item.get("image") or item.get("small_image") or {}
    return {
        "id": item.get("id"),
        "sku": item.get("sku"),
        "name": item.get("name"),
        "price": final_price.get("value"),
        "regularPrice": regular_price.get("value"),
        "currency": final_price.get("currency"),
        "image": image.get("url"),
        "stockStatus": item.get("stock_status"),
        "urlKey": item.get("url_key"),
    }


def _normalize_cart(cart: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not cart:
        raise CommerceUserError("Cart not found")
    prices = cart.get("prices") or {}
    grand_total = prices.get("grand_total") or {}
    subtotal = prices.get("subtotal_excluding_tax") or {}
    items: List[Dict[str, Any]] = []
    for item in cart.get("items") or []:
        product = item.get("product") or {}
        row_total = (item.get("prices") or {}).get("row_total") or {}
        items.append(
            {
                "cartItemId": item.get("id"),
                "sku": product.get("sku"),
                "name": product.get("name"),
                "quantity": item.get("quantity"),
                "rowTotal": row_total.get("value"),
            }
        )
    return {
        "cartId": cart.get("id"),
        "items": items,
        "totalItems": cart.get("total_quantity", 0),
        "total": grand_total.get("value"),
        "currency": grand_total.get("currency"),
        "subtotal": subtotal.get("value"),
    }
