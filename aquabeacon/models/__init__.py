"""Models package for database models."""

from aquabeacon.models.user import User
from aquabeacon.models.payment import Payment

__all__ = [
    "User",
    "Payment",
]
