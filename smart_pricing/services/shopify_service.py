"""Shopify service layer - handles Shopify GraphQL operations."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import requests

from smart_pricing.config import settings
from smart_pricing.exceptions import ExternalAPIError
from smart_pricing.models import Product, Store, Variant
from smart_pricing.services.rate_limiter import StoreRateLimiter
from smart_pricing.services.shopify_ids import normalize_shopify_id, to_gid

LOG = logging.getLogger(__name__)

QUERY_PRODUCT_FIRST_VARIANT = """
query($id: ID!) {
  product(id: $id) {
    id
    variants(first: 1) { edges { node { id } } }
  }
}
"""

MUTATION_PRODUCT_VARIANTS_BULK_UPDATE = """
mutation($productId: ID!, $variants: [ProductVariantsBulkInput!]!) {
  productVariantsBulkUpdate(productId: $productId, variants: $variants) {
    productVariants { id price compareAtPrice }
    userErrors { field message }
  }
}
"""

QUERY_PRODUCTS_PAGE = """
query($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        title
        status
        variants(first: 100) {
          edges { node { id title sku price } }
        }
      }
    }
  }
}
"""


class ShopifyService:
    """Service for interacting with Shopify GraphQL API.

    All calls for a store pass through that store's throttle and run the
    blocking ``requests`` call in a worker thread. The ``requests`` timeout
    bounds the connect and each read; the call is awaited until it returns.
    """

    def __init__(self, rate_limiter: Optional[StoreRateLimiter] = None, timeout: Optional[float] = None):
        self.api_version = settings.shopify_api_version
        self.timeout = timeout or settings.shopify_request_timeout_seconds
        self.rate_limiter = rate_limiter or StoreRateLimiter(settings.shopify_min_request_interval_ms)

    def _graphql_request(self, store: Store, query: str, variables: dict = None) -> dict:
        """Make a GraphQL request to Shopify."""
        if not store.shop_domain or not store.access_token:
            raise ExternalAPIError(f"Shopify credentials not configured for store {store.id}")

        graphql_url = f"https://{store.shop_domain}/admin/api/{self.api_version}/graphql.json"

        headers = {
            "X-Shopify-Access-Token": store.access_token,
            "Content-Type": "application/json"
        }
        try:
            response = requests.post(
                graphql_url,
                json={"query": query, "variables": variables or {}},
                headers=headers,
                timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except requests.Timeout as exc:
            raise ExternalAPIError(f"Shopify request timed out after {self.timeout}s") from exc
        except (requests.RequestException, ValueError) as exc:
            raise ExternalAPIError(f"Shopify request failed: {exc}") from exc

        if "errors" in data:
            raise ExternalAPIError(f"GraphQL errors: {data['errors']}")

        return data.get("data") or {}

    async def _call(self, store: Store, query: str, variables: dict) -> dict:
        # Awaited to completion; only a ``requests`` timeout is reported as one
        async def dispatch():
            return await asyncio.to_thread(self._graphql_request, store, query, variables)

        return await self.rate_limiter.run(store.id, dispatch)

    async def resolve_variant_gid(
        self,
        store: Store,
        product_shopify_id: str,
        variant_shopify_id: Optional[str] = None
    ) -> str:
        """Return the variant's GraphQL id, falling back to the product's first variant."""
        if variant_shopify_id:
            return to_gid("ProductVariant", variant_shopify_id)

        result = await self._call(store, QUERY_PRODUCT_FIRST_VARIANT, {"id": to_gid("Product", product_shopify_id)})
        edges = ((result.get("product") or {}).get("variants") or {}).get("edges") or []
        if not edges:
            raise ExternalAPIError(f"No variant found for product {product_shopify_id}")
        return edges[0]["node"]["id"]

    async def update_variant_price(
        self,
        store: Store,
        product_shopify_id: str,
        variant_shopify_id: Optional[str],
        price: float
    ) -> dict:
        """Set a variant's price and clear its compare-at price."""
        variant_gid = await self.resolve_variant_gid(store, product_shopify_id, variant_shopify_id)
        variables = {
            "productId": to_gid("Product", product_shopify_id),
            "variants": [{
                "id": variant_gid,
                "price": f"{price:.2f}",
                # No strike-through price next to reverted or increased prices
                "compareAtPrice": None,
            }]
        }
        result = await self._call(store, MUTATION_PRODUCT_VARIANTS_BULK_UPDATE, variables)

        bulk_result = result.get("productVariantsBulkUpdate") or {}
        user_errors = bulk_result.get("userErrors") or []
        if user_errors:
            error_msg = "; ".join(
                f"{e.get('field', 'unknown')}: {e.get('message', 'unknown')}" for e in user_errors
            )
            raise ExternalAPIError(f"Shopify rejected price update: {error_msg}")

        LOG.info("Shopify price for %s set to %.2f", variant_gid, price)
        return bulk_result

    async def sync_store_products(self, db, store: Store) -> dict:
        """Fetch all products of a store from Shopify and upsert the local mirror.

        New variants take their current price as starting price; the
        starting price of a known variant is never changed.
        """
        all_products = []
        has_next_page = True
        cursor = None

        while has_next_page:
            result = await self._call(store, QUERY_PRODUCTS_PAGE, {"first": 50, "after": cursor})
            products_data = result.get("products") or {}
            for edge in products_data.get("edges", []):
                all_products.append(edge["node"])

            page_info = products_data.get("pageInfo", {})
            has_next_page = page_info.get("hasNextPage", False)
            cursor = page_info.get("endCursor")

        total_products = 0
        total_variants = 0

        for prod_data in all_products:
            product_shopify_id = normalize_shopify_id(prod_data["id"])
            product = db.query(Product).filter(
                Product.store_id == store.id,
                Product.shopify_id == product_shopify_id
            ).first()

            if product:
                product.title = prod_data["title"]
                product.status = prod_data.get("status")
            else:
                product = Product(
                    store_id=store.id,
                    shopify_id=product_shopify_id,
                    title=prod_data["title"],
                    status=prod_data.get("status"),
                )
                db.add(product)
                db.flush()

            total_products += 1

            for var_edge in (prod_data.get("variants") or {}).get("edges", []):
                var_data = var_edge["node"]
                variant_shopify_id = normalize_shopify_id(var_data["id"])
                price = float(var_data["price"])

                variant = db.query(Variant).filter(
                    Variant.store_id == store.id,
                    Variant.shopify_id == variant_shopify_id
                ).first()

                if variant:
                    variant.title = var_data.get("title")
                    variant.sku = var_data.get("sku")
                    variant.price = price
                else:
                    db.add(Variant(
                        product_id=product.id,
                        store_id=store.id,
                        shopify_id=variant_shopify_id,
                        title=var_data.get("title"),
                        sku=var_data.get("sku"),
                        price=price,
                        starting_price=price,
                    ))

                total_variants += 1

        store.last_synced_at = datetime.now(timezone.utc)
        db.commit()

        LOG.info("Synced %d products / %d variants for %s", total_products, total_variants, store.shop_domain)
        return {
            "total_products": total_products,
            "total_variants": total_variants,
            "synced_at": store.last_synced_at
        }


# Singleton instance
shopify_service = ShopifyService()
