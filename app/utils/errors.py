"""
Domain exceptions raised by the pricing and promotion services.
Routers translate them into HTTP responses.
"""
from typing import Dict, List, Optional


class PricingError(Exception):
    """Base class for pricing / promotion errors"""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PricingValidationError(PricingError):
    """Input has the wrong shape or is out of range. Nothing was written."""

    status_code = 400

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class PricingConflictError(PricingError):
    """Overlapping pricing ranges for the same pricing key"""

    status_code = 409

    def __init__(self, message: str, conflicts: Optional[List[Dict]] = None):
        super().__init__(message)
        self.conflicts = conflicts or []


class NotFoundError(PricingError):
    status_code = 404
