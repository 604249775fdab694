from __future__ import annotations

from enum import StrEnum


class IntentType(StrEnum):
    """Closed vocabulary of intents the classifier may return."""

    PRODUCT_SEARCH = "product_search"
    PRODUCT_DETAILS = "product_details"
    ADD_TO_CART = "add_to_cart"
    VIEW_CART = "view_cart"
    CART_MANAGEMENT = "cart_management"
    GENERAL_QUESTION = "general_question"
    GREETING = "greeting"


class CapabilityName(StrEnum):
    """Names of the catalog/cart operations exposed by the capability registry."""

    SEARCH_PRODUCTS = "search_products"
    GET_PRODUCT_DETAILS = "get_product_details"
    CREATE_CART = "create_cart"
    ADD_TO_CART = "add_to_cart"
    GET_CART = "get_cart"
    UPDATE_CART_ITEM = "update_cart_item"
    REMOVE_CART_ITEM = "remove_cart_item"


# Substring triggers for the deterministic fallback, checked in this order.
SEARCH_KEYWORDS: tuple[str, ...] = ("search", "find", "show", "looking for")
CART_KEYWORDS: tuple[str, ...] = ("cart",)


def intent_descriptions() -> dict[str, str]:
    """Human readable descriptions shipped to the LLM to improve grounding."""

    return {
        IntentType.PRODUCT_SEARCH.value: "User wants to find products",
        IntentType.PRODUCT_DETAILS.value: "User wants details about a specific product",
        IntentType.ADD_TO_CART.value: "User wants to add something to cart",
        IntentType.VIEW_CART.value: "User wants to see their cart",
        IntentType.CART_MANAGEMENT.value: "User wants to update/remove cart items",
        IntentType.GENERAL_QUESTION.value: "General inquiry",
        IntentType.GREETING.value: "User is greeting",
    }
