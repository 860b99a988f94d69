"""
Control-plane database models.

Importing this package registers every table on stockroom.db_base.Base.
"""

from stockroom.models.tenant import Tenant
from stockroom.models.user import User
from stockroom.models.purchase import ExternalPurchase
from stockroom.models.billing_event import BillingEvent

__all__ = [
    "Tenant",
    "User",
    "ExternalPurchase",
    "BillingEvent",
]
