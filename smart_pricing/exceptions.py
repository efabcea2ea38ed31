"""Errors raised by the pricing engine."""


class PricingError(Exception):
    """Base class for pricing engine errors."""


class ValidationError(PricingError):
    """Malformed external id or missing required field."""


class ExternalAPIError(PricingError):
    """Shopify call failed or timed out. No local state was written."""


class PersistenceError(PricingError):
    """Local write failed after Shopify accepted the price.

    Shopify and the local mirror now disagree and need reconciliation.
    """

    def __init__(self, message: str, variant_id=None, pushed_price=None):
        super().__init__(message)
        self.variant_id = variant_id
        self.pushed_price = pushed_price


class DuplicateEventError(PricingError):
    """Webhook delivery was already processed."""


class ConfigNotFoundError(PricingError):
    """Variant has no pricing config (or the variant does not exist)."""


class ConcurrentModificationError(PricingError):
    """Config changed since it was read; the mutation was not applied."""
