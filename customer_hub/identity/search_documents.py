"""
Maintenance of the ``customer_search_documents`` read model.

Each document flattens a customer and all of its identities into the
columns the ranked search filters on. Documents are rebuilt whole; a
rebuild is cheap (one customer, a handful of identities) and keeps the
read model trivially consistent after resolver writes and merges.
"""

from __future__ import annotations

from typing import Iterable

from flask import current_app
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from customer_hub.models import Customer, CustomerIdentity, CustomerSearchDocument, db
from customer_hub.models.base import utc_now

from .normalize import phone_digits
from .scoring import fold_text


def _unique(values: Iterable[str | None]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def _padded(tokens: Iterable[str]) -> str:
    """Space-delimit tokens with sentinels so ``LIKE '% token %'`` tests membership."""

    joined = " ".join(tokens)
    return f" {joined} " if joined else ""


def build_search_document(customer: Customer, identities: list[CustomerIdentity]) -> dict:
    """Compute the column values of a customer's search document."""

    emails = _unique([customer.primary_email] + [identity.email for identity in identities])
    phones = _unique([customer.primary_phone] + [identity.phone for identity in identities])
    providers = sorted({identity.provider.value for identity in identities})

    name_tokens = fold_text(" ".join(part for part in (customer.first_name, customer.last_name) if part))
    company = fold_text(customer.company)
    phone_tokens = _unique(phone_digits(phone) for phone in phones)

    return {
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "company": customer.company,
        "primary_email": customer.primary_email,
        "primary_phone": customer.primary_phone,
        "is_vip": bool(customer.is_vip),
        "all_emails": emails,
        "all_phones": phones,
        "identity_providers": providers,
        "search_name": name_tokens.replace(" ", ""),
        "search_name_tokens": name_tokens,
        "search_emails": _padded(emails),
        "search_phones": _padded(phone_tokens),
        "search_text": " ".join(token for token in (name_tokens, company, " ".join(emails)) if token),
        "indexed_at": utc_now(),
        "customer_updated_at": customer.updated_at,
    }


def refresh_search_document(customer_id: int, *, session: Session | None = None) -> CustomerSearchDocument | None:
    """
    Rebuild (or drop) the search document for one customer.

    Returns ``None`` when the customer no longer exists, after removing any
    stale document left behind.
    """

    session = session or db.session
    customer = session.get(Customer, customer_id)
    if customer is None:
        session.execute(delete(CustomerSearchDocument).where(CustomerSearchDocument.customer_id == customer_id))
        return None

    identities = list(
        session.scalars(
            select(CustomerIdentity)
            .where(CustomerIdentity.customer_id == customer_id)
            .order_by(CustomerIdentity.id)
        )
    )
    values = build_search_document(customer, identities)

    document = session.get(CustomerSearchDocument, customer_id)
    if document is None:
        document = CustomerSearchDocument(customer_id=customer_id, **values)
        session.add(document)
    else:
        for key, value in values.items():
            setattr(document, key, value)
    session.flush()
    return document


def rebuild_all_search_documents(*, session: Session | None = None, batch_size: int = 500) -> int:
    """Rebuild every document; returns the number of customers indexed."""

    session = session or db.session
    customer_ids = list(session.scalars(select(Customer.id).order_by(Customer.id)))
    for offset in range(0, len(customer_ids), batch_size):
        for customer_id in customer_ids[offset : offset + batch_size]:
            refresh_search_document(customer_id, session=session)
        session.commit()
    session.execute(
        delete(CustomerSearchDocument).where(CustomerSearchDocument.customer_id.not_in(select(Customer.id)))
    )
    session.commit()
    current_app.logger.info(f"Rebuilt {len(customer_ids)} customer search document(s)")
    return len(customer_ids)


__all__ = ["build_search_document", "rebuild_all_search_documents", "refresh_search_document"]
