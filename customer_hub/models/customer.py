"""
Unified customer tables.

``Customer`` is the provider-independent identity record. Every provider
signal observed for a person lands in ``CustomerIdentity``; the
``CustomerSearchDocument`` read model is rebuilt from both whenever the
resolver or merge workflow writes.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db, utc_now


class IdentityProvider(str, enum.Enum):
    """External systems that can vouch for a customer identity."""

    STOREFRONT = "storefront"
    MARKETPLACE = "marketplace"
    ACCOUNTING = "accounting"
    FULFILLMENT = "fulfillment"
    MANUAL = "manual"
    SELF_REPORTED = "self_reported"

    @classmethod
    def coerce(cls, value: "IdentityProvider | str") -> "IdentityProvider":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower().replace("-", "_")
        for member in cls:
            if member.value == normalized or member.name.lower() == normalized:
                return member
        raise ValueError(f"Unknown identity provider: {value!r}")


class Customer(BaseModel):
    """Unified customer record that all provider identities point at."""

    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    primary_email: Mapped[str | None] = mapped_column(db.String(255), nullable=True, index=True)
    primary_phone: Mapped[str | None] = mapped_column(db.String(32), nullable=True, index=True)
    first_name: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    company: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    is_vip: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    credit_risk_level: Mapped[str | None] = mapped_column(db.String(20), nullable=True)

    identities = relationship(
        "CustomerIdentity",
        back_populates="customer",
        order_by="CustomerIdentity.id",
        passive_deletes=True,
    )

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.company or self.primary_email or f"Customer #{self.id}"

    def __repr__(self) -> str:
        return f"<Customer {self.id} {self.display_name!r}>"


class CustomerIdentity(BaseModel):
    """One provider-specific signal (external id, email, phone) for a customer."""

    __tablename__ = "customer_identities"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider: Mapped[IdentityProvider] = mapped_column(
        Enum(IdentityProvider, name="identity_provider_enum"),
        nullable=False,
    )
    external_id: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(db.String(32), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Provenance: address_hash, has_email flag, source record id.",
    )

    customer = relationship("Customer", back_populates="identities")

    __table_args__ = (
        # NULL external ids never collide, so email/phone-only identities stay unconstrained.
        UniqueConstraint("provider", "external_id", name="uq_customer_identities_provider_external"),
        Index("idx_customer_identities_email", "email"),
        Index("idx_customer_identities_phone", "phone"),
    )

    def __repr__(self) -> str:
        return f"<CustomerIdentity {self.provider.value}:{self.external_id} -> {self.customer_id}>"


class CustomerSearchDocument(db.Model):
    """Denormalized per-customer read model backing ranked search."""

    __tablename__ = "customer_search_documents"

    customer_id: Mapped[int] = mapped_column(
        ForeignKey("customers.id", ondelete="CASCADE"),
        primary_key=True,
    )
    first_name: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    company: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    primary_email: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    primary_phone: Mapped[str | None] = mapped_column(db.String(32), nullable=True)
    is_vip: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    all_emails: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    all_phones: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    identity_providers: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    search_name: Mapped[str] = mapped_column(db.String(255), nullable=False, default="", index=True)
    search_name_tokens: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    search_emails: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    search_phones: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    search_text: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    indexed_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    customer_updated_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)


class CustomerMergeLog(BaseModel):
    """Audit trail for operator-triggered customer merges."""

    __tablename__ = "customer_merge_logs"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    primary_customer_id: Mapped[int] = mapped_column(db.Integer, nullable=False, index=True)
    merged_customer_ids: Mapped[list] = mapped_column(db.JSON, nullable=False)
    snapshot_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Field values of the losing customers captured before deletion.",
    )
    repointed_counts: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    performed_by: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
