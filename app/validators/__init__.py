"""
app/validators package marker.
"""

from app.validators.identity_row_validator import BatchValidationContext, IdentityRowValidator

__all__ = [
    "BatchValidationContext",
    "IdentityRowValidator",
]
