"""SQLAlchemy models."""

from fleetfin.models.base import Base
from fleetfin.models.company import Company, Profile
from fleetfin.models.transaction import Transaction
from fleetfin.models.transaction_rule import TransactionRule

__all__ = [
    "Base",
    "Company",
    "Profile",
    "Transaction",
    "TransactionRule",
]
