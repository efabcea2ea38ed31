"""Shopify id normalization.

REST payloads carry numeric ids, GraphQL uses global ids such as
``gid://shopify/Product/123``. Both are stored as the bare numeric string.
"""
import re

from smart_pricing.exceptions import ValidationError

_NUMERIC = re.compile(r"^\d+$")


def normalize_shopify_id(raw_id) -> str:
    """Return the canonical numeric string for a Shopify id or raise ValidationError."""
    if raw_id is None or isinstance(raw_id, bool):
        raise ValidationError(f"Invalid Shopify id: {raw_id!r}")

    if isinstance(raw_id, int):
        if raw_id <= 0:
            raise ValidationError(f"Invalid Shopify id: {raw_id!r}")
        return str(raw_id)

    if isinstance(raw_id, str):
        candidate = raw_id.strip()
        if candidate.startswith("gid://"):
            candidate = candidate.rsplit("/", 1)[-1]
        if candidate and _NUMERIC.match(candidate) and int(candidate) > 0:
            return candidate

    raise ValidationError(f"Invalid Shopify id: {raw_id!r}")


def to_gid(kind: str, shopify_id: str) -> str:
    """Build a GraphQL global id, e.g. ``to_gid("ProductVariant", "42")``."""
    return f"gid://shopify/{kind}/{normalize_shopify_id(shopify_id)}"
