from __future__ import annotations

import json
from typing import Sequence

from ..models.capability import CapabilityResult

SYSTEM_PROMPT = """You are a helpful AI shopping assistant for an e-commerce store. Your role is to help customers:

1. Find products they're looking for
2. Get detailed product information
3. Add products to their shopping cart
4. View and manage their cart

Available tools:
- search_products: Search the product catalog
- get_product_details: Get details about a specific product
- create_cart: Create a new shopping cart
- add_to_cart: Add products to the cart
- get_cart: View cart contents
- update_cart_item: Update item quantities
- remove_cart_item: Remove items from cart

Guidelines:
- Be friendly, helpful, and conversational
- Always confirm before adding items to cart
- Provide clear product information (price, availability)
- Suggest alternatives if products are out of stock
- Keep responses concise but informative
- Use tools proactively to help the customer

When the user wants to search for products, use search_products.
When they want to add something to cart, use add_to_cart (make sure you have a cartId).
If no cart exists, create one first with create_cart."""


def summarize_capability_results(results: Sequence[CapabilityResult]) -> str:
    blocks = []
    for result in results:
        if result.success:
            payload = json.dumps(result.data, indent=2, ensure_ascii=False, default=str)
            blocks.append(f"Tool: {result.capability_name}\nResult: {payload}")
        else:
            blocks.append(f"Tool: {result.capability_name}\nError: {result.error}")
    return "\n\n".join(blocks)


def build_tool_response_prompt(user_message: str, results: Sequence[CapabilityResult]) -> str:
    return (
        "Based on the tool results, provide a helpful response.\n\n"
        f'User\'s question: "{user_message}"\n\n'
        f"Tool Results:\n{summarize_capability_results(results)}\n\n"
        "Guidelines:\n"
        "- Be conversational and natural\n"
        "- Summarize the key information\n"
        "- Format product information clearly\n"
        "- If a tool failed, tell the user what went wrong and suggest a next step\n"
        "- Don't just repeat the data, interpret it for the user"
    )
