"""GraphQL documents for the commerce backend."""

_CART_ITEM_FIELDS = """
        id
        product {
          sku
          name
          thumbnail {
            url
            label
          }
        }
        quantity
        prices {
          row_total {
            value
            currency
          }
          price {
            value
            currency
          }
        }
"""

_CART_FIELDS = f"""
      id
      items {{{_CART_ITEM_FIELDS}      }}
      prices {{
        grand_total {{
          value
          currency
        }}
        subtotal_excluding_tax {{
          value
          currency
        }}
      }}
      total_quantity
"""

PRODUCT_SEARCH_QUERY = """
  query ProductSearch($search: String!, $pageSize: Int, $currentPage: Int) {
    products(search: $search, pageSize: $pageSize, currentPage: $currentPage) {
      items {
        id
        sku
        name
        price_range {
          minimum_price {
            final_price {
              value
              currency
            }
            regular_price {
              value
              currency
            }
          }
        }
        image {
          url
          label
        }
        small_image {
          url
          label
        }
        stock_status
        url_key
      }
      total_count
      page_info {
        page_size
        current_page
        total_pages
      }
    }
  }
"""

GET_PRODUCT_DETAILS_QUERY = """
  query GetProductDetails($sku: String!) {
    products(filter: { sku: { eq: $sku } }) {
      items {
        id
        sku
        name
        description {
          html
        }
        price_range {
          minimum_price {
            final_price {
              value
              currency
            }
          }
        }
        image {
          url
        }
        media_gallery {
          url
          label
        }
        stock_status
      }
    }
  }
"""

CREATE_EMPTY_CART_MUTATION = """
  mutation CreateEmptyCart {
    createEmptyCart
  }
"""

ADD_PRODUCTS_TO_CART_MUTATION = f"""
  mutation AddProductsToCart($cartId: String!, $cartItems: [CartItemInput!]!) {{
    addProductsToCart(cartId: $cartId, cartItems: $cartItems) {{
      cart {{{_CART_FIELDS}      }}
      user_errors {{
        code
        message
      }}
    }}
  }}
"""

GET_CART_QUERY = f"""
  query GetCart($cartId: String!) {{
    cart(cart_id: $cartId) {{{_CART_FIELDS}    }}
  }}
"""

UPDATE_CART_ITEMS_MUTATION = f"""
  mutation UpdateCartItems($cartId: String!, $cartItemId: ID!, $quantity: Float!) {{
    updateCartItems(
      input: {{
        cart_id: $cartId
        cart_items: [{{ cart_item_id: $cartItemId, quantity: $quantity }}]
      }}
    ) {{
      cart {{{_CART_FIELDS}      }}
    }}
  }}
"""

REMOVE_ITEM_FROM_CART_MUTATION = f"""
  mutation RemoveItemFromCart($cartId: String!, $cartItemId: ID!) {{
    removeItemFromCart(input: {{ cart_id: $cartId, cart_item_id: $cartItemId }}) {{
      cart {{{_CART_FIELDS}      }}
    }}
  }}
"""
