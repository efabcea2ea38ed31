"""Translation of pricing errors into HTTP errors."""
from fastapi import HTTPException

from smart_pricing.exceptions import (
    ConcurrentModificationError,
    ConfigNotFoundError,
    DuplicateEventError,
    ExternalAPIError,
    PersistenceError,
    PricingError,
    ValidationError,
)

STATUS_CODES = {
    ValidationError: 400,
    ConfigNotFoundError: 404,
    ConcurrentModificationError: 409,
    DuplicateEventError: 409,
    ExternalAPIError: 502,
    PersistenceError: 500,
}


def http_error(exc: PricingError) -> HTTPException:
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
