# customer_hub/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .commerce import (
    CUSTOMER_OWNED_MODELS,
    ONE_PER_CUSTOMER_MODELS,
    AccountingCustomerSnapshot,
    AccountingEstimate,
    AccountingInvoice,
    Call,
    Contact,
    CrmTask,
    CustomerScore,
    Interaction,
    Opportunity,
    Order,
    SearchIndexEntry,
    Shipment,
    Ticket,
)
from .customer import (
    Customer,
    CustomerIdentity,
    CustomerMergeLog,
    CustomerSearchDocument,
    IdentityProvider,
)
from .sync import SyncCursor

__all__ = [
    "db",
    "BaseModel",
    "Customer",
    "CustomerIdentity",
    "CustomerMergeLog",
    "CustomerSearchDocument",
    "IdentityProvider",
    "SyncCursor",
    "Contact",
    "Order",
    "Shipment",
    "Ticket",
    "Interaction",
    "Opportunity",
    "Call",
    "CrmTask",
    "AccountingInvoice",
    "AccountingEstimate",
    "AccountingCustomerSnapshot",
    "CustomerScore",
    "SearchIndexEntry",
    "CUSTOMER_OWNED_MODELS",
    "ONE_PER_CUSTOMER_MODELS",
]
