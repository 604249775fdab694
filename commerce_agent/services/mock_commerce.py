from __future__ import annotations

import json
import logging
import re
import uuid
from copy import deepcopy
from itertools import count
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List

from .commerce_client import MAX_PAGE_SIZE, CommerceBackend
from .errors import CommerceUserError

logger = logging.getLogger(__name__)

_STOPWORDS = {
    "a", "an", "and", "any", "do", "find", "for", "have", "i", "im", "in", "is",
    "looking", "me", "my", "need", "of", "please", "search", "show", "some",
    "the", "to", "want", "with", "you",
}
_TOKEN_RE = re.compile(r"[a-z0-9][a-z0-9\-]*")


class MockCommerceBackend(CommerceBackend):
    """File-based, in-process stand-in for the commerce backend."""

    DATA_DIR = Path(__file__).resolve().parent.parent / "mock_data"

    def __init__(self, catalog: List[Dict[str, Any]] | None = None) -> None:
        self._catalog = catalog if catalog is not None else self._load_json("catalog.json", default=[])
        self._product_index: Dict[str, Dict[str, Any]] = {
            product["sku"]: product for product in self._catalog if product.get("sku")
        }
        self._carts: Dict[str, Dict[str, Any]] = {}
        self._item_ids = count(1)
        self._lock = Lock()

    def _load_json(self, filename: str, *, default: Any) -> Any:
        path = self.DATA_DIR / filename
        if not path.exists():
            logger.info("Mock data file %s is missing, using defaults.", filename)
            return deepcopy(default)
        try:
            with path.open("r", encoding="utf-8") as fp:
                return json.load(fp)
        except json.JSONDecodeError as exc:
            logger.warning("Failed to decode %s: %s", filename, exc)
            return deepcopy(default)

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------
    async def search_products(self, query, *, page_size, current_page, customer_token=None):
        tokens = [token for token in _TOKEN_RE.findall(query.lower()) if token not in _STOPWORDS]
        scored = []
        for product in self._catalog:
            haystack = " ".join(
                [product.get("name", ""), product.get("description", ""), *product.get("keywords", [])]
            ).lower()
            score = sum(1 for token in tokens if token in haystack)
            if score:
                scored.append((score, product))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        matches = [self._public_product(product) for _, product in scored]

        page_size = min(page_size, MAX_PAGE_SIZE)
        start = (current_page - 1) * page_size
        total_pages = max(1, -(-len(matches) // page_size))
        return {
            "products": matches[start : start + page_size],
            "totalCount": len(matches),
            "pageInfo": {
                "page_size": page_size,
                "current_page": current_page,
                "total_pages": total_pages,
            },
        }

    async def get_product(self, sku, *, customer_token=None):
        product = self._product_index.get(sku)
        if product is None:
            raise CommerceUserError(f'Product with SKU "{sku}" not found')
        details = self._public_product(product)
        details["description"] = product.get("description")
        details["mediaGallery"] = [{"url": product.get("image"), "label": product.get("name")}]
        return details

    # -------------------------------------------------------------------------
    # Cart
    # -------------------------------------------------------------------------
    async def create_cart(self, *, customer_token=None):
        cart_id = f"mock-cart-{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._carts[cart_id] = {"items": []}
        return cart_id

    async def add_to_cart(self, cart_id, sku, quantity, *, customer_token=None):
        with self._lock:
            cart = self._require_cart(cart_id)
            product = self._product_index.get(sku)
            if product is None:
                raise CommerceUserError(f'Could not find a product with SKU "{sku}"')
            existing = next((item for item in cart["items"] if item["sku"] == sku), None)
            requested = quantity + (existing["quantity"] if existing else 0)
            if product.get("stockStatus") != "IN_STOCK" or requested > product.get("qty", 0):
                raise CommerceUserError(f'The requested qty of "{product["name"]}" is not available')
            if existing:
                existing["quantity"] = requested
            else:
                cart["items"].append({"cartItemId": str(next(self._item_ids)), "sku": sku, "quantity": quantity})
            return self._cart_payload(cart_id, cart)

    async def get_cart(self, cart_id, *, customer_token=None):
        with self._lock:
            return self._cart_payload(cart_id, self._require_cart(cart_id))

    async def update_cart_item(self, cart_id, cart_item_id, quantity, *, customer_token=None):
        with self._lock:
            cart = self._require_cart(cart_id)
            item = self._require_item(cart, cart_item_id)
            if quantity <= 0:
                cart["items"].remove(item)
            else:
                item["quantity"] = quantity
            return self._cart_payload(cart_id, cart)

    async def remove_cart_item(self, cart_id, cart_item_id, *, customer_token=None):
        with self._lock:
            cart = self._require_cart(cart_id)
            cart["items"].remove(self._require_item(cart, cart_item_id))
            return self._cart_payload(cart_id, cart)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    def _require_cart(self, cart_id: str) -> Dict[str, Any]:
        cart = self._carts.get(cart_id)
        if cart is None:
            raise CommerceUserError(f'Could not find a cart with ID "{cart_id}"')
        return cart

    @staticmethod
    def _require_item(cart: Dict[str, Any], cart_item_id: str) -> Dict[str, Any]:
        for item in cart["items"]:
            if item["cartItemId"] == str(cart_item_id):
                return item
        raise CommerceUserError(f'Could not find cart item with ID "{cart_item_id}"')

    @staticmethod
    def _public_product(product: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": product.get("id"),
            "sku": product.get("sku"),
            "name": product.get("name"),
            "price": product.get("price"),
            "regularPrice": product.get("regularPrice"),
            "currency": product.get("currency"),
            "image": product.get("image"),
            "stockStatus": product.get("stockStatus"),
            "urlKey": product.get("sku", "").lower(),
        }

    def _cart_payload(self, cart_id: str, cart: Dict[str, Any]) -> Dict[str, Any]:
        items = []
        total = 0.0
        currency = None
        for item in cart["items"]:
            product = self._product_index.get(item["sku"], {})
            row_total = round(item["quantity"] * float(product.get("price") or 0.0), 2)
            total += row_total
            currency = currency or product.get("currency")
            items.append({**item, "name": product.get("name"), "rowTotal": row_total})
        total = round(total, 2)
        return {
            "cartId": cart_id,
            "items": items,
            "totalItems": sum(item["quantity"] for item in cart["items"]),
            "total": total,
            "currency": currency or "USD",
            "subtotal": total,
        }
