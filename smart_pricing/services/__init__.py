# Services package
from smart_pricing.services.shopify_service import shopify_service
from smart_pricing.services.revenue_service import revenue_service
from smart_pricing.services.price_mutation_service import price_mutation_service
from smart_pricing.services.smart_pricing_service import smart_pricing_service
from smart_pricing.services.webhook_service import webhook_service
from smart_pricing.services.algorithm_service import algorithm_service

__all__ = [
    "shopify_service",
    "revenue_service",
    "price_mutation_service",
    "smart_pricing_service",
    "webhook_service",
    "algorithm_service",
]
