"""
Built-in capabilities: catalog search/details and cart operations.

Each capability declares its JSON input schema, validates its own parameters
and executes against a :class:`CommerceBackend`. Validation problems raise
``ValidationError``; the registry turns every failure into a
``CapabilityResult`` so nothing escapes to the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Tuple

from ..intents import CapabilityName
from ..models.capability import CapabilityContext, CapabilityDescriptor
from .commerce_client import CommerceBackend
from .errors import ValidationError

HandlerResult = Tuple[Any, str | None]
Handler = Callable[[CommerceBackend, Dict[str, Any], CapabilityContext], Awaitable[HandlerResult]]


@dataclass(frozen=True)
class Capability:
    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: Handler

    def describe(self) -> CapabilityDescriptor:
        return CapabilityDescriptor(name=self.name, description=self.description, input_schema=self.input_schema)

    def validate(self, params: Dict[str, Any]) -> None:
        for field in self.input_schema.get("required", []):
            value = params.get(field)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValidationError(f"Missing required parameter: {field}")
        for field, spec in self.input_schema.get("properties", {}).items():
            if spec.get("type") == "number" and params.get(field) is not None:
                _positive_number(params, field)

    async def execute(
        self, backend: CommerceBackend, params: Dict[str, Any], context: CapabilityContext
    ) -> HandlerResult:
        self.validate(params)
        return await self.handler(backend, params, context)


def _positive_number(params: Dict[str, Any], field: str, default: float | None = None) -> float:
    raw = params.get(field, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Parameter {field} must be a number") from None
    if value <= 0:
        raise ValidationError(f"Parameter {field} must be greater than zero")
    return int(value) if value.is_integer() else value


def _schema(properties: Dict[str, Dict[str, str]], required: list[str]) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


_CART_ID = {"type": "string", "description": "Cart ID"}
_CART_ITEM_ID = {"type": "string", "description": "Cart item ID"}


async def _search_products(backend, params, context):
    query = str(params["query"]).strip()
    page_size = _positive_number(params, "pageSize", 10)
    current_page = _positive_number(params, "currentPage", 1)
    data = await backend.search_products(
        query,
        page_size=int(page_size),
        current_page=int(current_page),
        customer_token=context.identity_credential,
    )
    return data, f'Found {len(data["products"])} products matching "{query}"'


async def _get_product_details(backend, params, context):
    data = await backend.get_product(str(params["sku"]), customer_token=context.identity_credential)
    return data, None


async def _create_cart(backend, params, context):
    cart_id = await backend.create_cart(customer_token=context.identity_credential)
    return {"cartId": cart_id}, "Shopping cart created successfully"


async def _add_to_cart(backend, params, context):
    quantity = _positive_number(params, "quantity", 1)
    data = await backend.add_to_cart(
        str(params["cartId"]),
        str(params["sku"]),
        quantity,
        customer_token=context.identity_credential,
    )
    return data, f"Added {quantity} {'item' if quantity == 1 else 'items'} to cart"


async def _get_cart(backend, params, context):
    data = await backend.get_cart(str(params["cartId"]), customer_token=context.identity_credential)
    return data, None


async def _update_cart_item(backend, params, context):
    data = await backend.update_cart_item(
        str(params["cartId"]),
        str(params["cartItemId"]),
        _positive_number(params, "quantity"),
        customer_token=context.identity_credential,
    )
    return data, "Cart item updated successfully"


async def _remove_cart_item(backend, params, context):
    data = await backend.remove_cart_item(
        str(params["cartId"]),
        str(params["cartItemId"]),
        customer_token=context.identity_credential,
    )
    return data, "Item removed from cart"


BUILT_IN_CAPABILITIES: tuple[Capability, ...] = (
    Capability(
        name=CapabilityName.SEARCH_PRODUCTS.value,
        description=(
            "Search for products in the catalog. Returns product information including name, "
            "price, image, and stock status."
        ),
        input_schema=_schema(
            {
                "query": {"type": "string", "description": "Search query (product name, keywords, category)"},
                "pageSize": {"type": "number", "description": "Number of products to return (default: 10, max: 20)"},
                "currentPage": {"type": "number", "description": "Page number for pagination (default: 1)"},
            },
            ["query"],
        ),
        handler=_search_products,
    ),
    Capability(
        name=CapabilityName.GET_PRODUCT_DETAILS.value,
        description="Get detailed information about a specific product by SKU",
        input_schema=_schema({"sku": {"type": "string", "description": "Product SKU"}}, ["sku"]),
        handler=_get_product_details,
    ),
    Capability(
        name=CapabilityName.CREATE_CART.value,
        description="Create a new empty shopping cart",
        input_schema=_schema({}, []),
        handler=_create_cart,
    ),
    Capability(
        name=CapabilityName.ADD_TO_CART.value,
        description="Add a product to the shopping cart",
        input_schema=_schema(
            {
                "sku": {"type": "string", "description": "Product SKU to add"},
                "quantity": {"type": "number", "description": "Quantity to add (default: 1)"},
                "cartId": {"type": "string", "description": "Cart ID (required)"},
            },
            ["sku", "cartId"],
        ),
        handler=_add_to_cart,
    ),
    Capability(
        name=CapabilityName.GET_CART.value,
        description="Get shopping cart contents and totals",
        input_schema=_schema({"cartId": _CART_ID}, ["cartId"]),
        handler=_get_cart,
    ),
    Capability(
        name=CapabilityName.UPDATE_CART_ITEM.value,
        description="Update the quantity of an item in the cart",
        input_schema=_schema(
            {
                "cartId": _CART_ID,
                "cartItemId": _CART_ITEM_ID,
                "quantity": {"type": "number", "description": "New quantity"},
            },
            ["cartId", "cartItemId", "quantity"],
        ),
        handler=_update_cart_item,
    ),
    Capability(
        name=CapabilityName.REMOVE_CART_ITEM.value,
        description="Remove an item from the shopping cart",
        input_schema=_schema({"cartId": _CART_ID, "cartItemId": _CART_ITEM_ID}, ["cartId", "cartItemId"]),
        handler=_remove_cart_item,
    ),
)
