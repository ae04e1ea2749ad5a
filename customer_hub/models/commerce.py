# customer_hub/models/commerce.py
"""
Tables owned by neighbouring subsystems that reference a customer.

Only the columns needed to link, display and re-point rows live here; the
subsystems that write them (order sync, ticketing, accounting, fulfillment)
extend them elsewhere. Sync jobs leave ``customer_id`` NULL when the
resolver reports an ambiguous identity.
"""

from sqlalchemy import UniqueConstraint

from .base import BaseModel, db


class Contact(BaseModel):
    """Person at a customer account (buyer, accounts payable, receiving)."""

    __tablename__ = "contacts"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    role = db.Column(db.String(50), nullable=True)


class Order(BaseModel):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    provider = db.Column(db.String(50), nullable=False)
    external_id = db.Column(db.String(255), nullable=False)
    order_number = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(50), nullable=True)
    total = db.Column(db.Numeric(12, 2), nullable=True)
    placed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    metadata_json = db.Column(db.JSON, nullable=True)

    __table_args__ = (UniqueConstraint("provider", "external_id", name="uq_orders_provider_external"),)


class Shipment(BaseModel):
    __tablename__ = "shipments"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    provider = db.Column(db.String(50), nullable=False)
    external_id = db.Column(db.String(255), nullable=False)
    tracking_number = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(50), nullable=True)

    __table_args__ = (UniqueConstraint("provider", "external_id", name="uq_shipments_provider_external"),)


class Ticket(BaseModel):
    __tablename__ = "tickets"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    title = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(30), nullable=False, default="open")


class Interaction(BaseModel):
    __tablename__ = "interactions"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=True)
    channel = db.Column(db.String(30), nullable=False)
    direction = db.Column(db.String(10), nullable=False, default="inbound")
    body = db.Column(db.Text, nullable=True)
    metadata_json = db.Column(db.JSON, nullable=True)


class Opportunity(BaseModel):
    __tablename__ = "opportunities"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    title = db.Column(db.String(255), nullable=False)
    stage = db.Column(db.String(30), nullable=False, default="lead")
    estimated_value = db.Column(db.Numeric(12, 2), nullable=True)


class Call(BaseModel):
    __tablename__ = "calls"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    direction = db.Column(db.String(10), nullable=False)
    from_number = db.Column(db.String(32), nullable=True)
    to_number = db.Column(db.String(32), nullable=True)
    duration_seconds = db.Column(db.Integer, nullable=True)


class CrmTask(BaseModel):
    """Follow-up work item, including ambiguous-identity review tasks."""

    __tablename__ = "crm_tasks"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    task_type = db.Column(db.String(50), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="open")
    metadata_json = db.Column(db.JSON, nullable=True)


class AccountingInvoice(BaseModel):
    __tablename__ = "accounting_invoices"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    external_id = db.Column(db.String(255), nullable=False, unique=True)
    total = db.Column(db.Numeric(12, 2), nullable=True)
    balance = db.Column(db.Numeric(12, 2), nullable=True)


class AccountingEstimate(BaseModel):
    __tablename__ = "accounting_estimates"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    external_id = db.Column(db.String(255), nullable=False, unique=True)
    total = db.Column(db.Numeric(12, 2), nullable=True)


class SearchIndexEntry(BaseModel):
    """Knowledge-base source rows scoped to a customer."""

    __tablename__ = "search_index_entries"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    source_type = db.Column(db.String(50), nullable=False)
    source_id = db.Column(db.String(255), nullable=False)


class AccountingCustomerSnapshot(BaseModel):
    """Latest accounting balance/terms for a customer (one per customer)."""

    __tablename__ = "accounting_customer_snapshots"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    balance = db.Column(db.Numeric(12, 2), nullable=True)
    terms = db.Column(db.String(50), nullable=True)


class CustomerScore(BaseModel):
    """Health/churn score row computed by the scoring job (one per customer)."""

    __tablename__ = "customer_scores"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    health_score = db.Column(db.Integer, nullable=True)
    churn_risk = db.Column(db.String(20), nullable=True)


# Tables whose customer_id is re-pointed wholesale by a merge.
CUSTOMER_OWNED_MODELS = (
    Contact,
    Order,
    Ticket,
    Interaction,
    Opportunity,
    Call,
    CrmTask,
    AccountingInvoice,
    AccountingEstimate,
    Shipment,
    SearchIndexEntry,
)

# Tables holding at most one row per customer.
ONE_PER_CUSTOMER_MODELS = (AccountingCustomerSnapshot, CustomerScore)
