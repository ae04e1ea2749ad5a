"""
Ranked customer search.

Stage A pulls a bounded candidate set from ``customer_search_documents``
with cheap, index-friendly filters. Stage B scores those candidates in
Python (see :mod:`customer_hub.identity.scoring`). When the ranked path
fails at the database level (missing read model, missing ``pg_trgm``), the
service answers from a plain substring search over ``customers`` instead.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.monitoring import IdentityMonitoring
from customer_hub.models import Customer, CustomerIdentity, CustomerSearchDocument, db
from customer_hub.utils.db import dialect_name

from .normalize import phone_digits
from .scoring import SearchQuery, SearchType, analyze_query, rank_key, score_candidate


@dataclass(frozen=True)
class RankedCustomer:
    customer_id: int
    first_name: str | None
    last_name: str | None
    company: str | None
    primary_email: str | None
    primary_phone: str | None
    is_vip: bool
    score: float | None
    match_reasons: tuple[str, ...] = ()
    providers: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "customer_id": self.customer_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "company": self.company,
            "primary_email": self.primary_email,
            "primary_phone": self.primary_phone,
            "is_vip": self.is_vip,
            "score": self.score,
            "match_reasons": list(self.match_reasons),
            "providers": list(self.providers),
        }


@dataclass
class CustomerSearchResponse:
    query: str
    search_type: SearchType
    results: list[RankedCustomer] = field(default_factory=list)
    degraded: bool = False

    @property
    def customer_ids(self) -> list[int]:
        return [result.customer_id for result in self.results]


class CustomerSearchService:
    """Two-stage ranked search with a substring fallback."""

    def __init__(self, session: Session | None = None):
        self.session = session or db.session
        config = current_app.config
        self.candidate_limit = config.get("SEARCH_CANDIDATE_LIMIT", 200)
        self.default_limit = config.get("SEARCH_DEFAULT_LIMIT", 20)
        self.max_limit = config.get("SEARCH_MAX_LIMIT", 100)
        self.min_score = config.get("SEARCH_MIN_SCORE", 1.0)
        self.trgm_threshold = config.get("SEARCH_TRGM_THRESHOLD", 0.2)

    def search(self, query: str | None, limit: int | None = None) -> CustomerSearchResponse:
        analyzed = analyze_query(query)
        limit = max(1, min(limit or self.default_limit, self.max_limit))
        response = CustomerSearchResponse(query=analyzed.raw, search_type=analyzed.search_type)
        if analyzed.is_empty:
            return response

        started = time.perf_counter()
        try:
            with self.session.begin_nested():
                response.results = self._ranked_search(analyzed, limit)
        except SQLAlchemyError as exc:
            current_app.logger.warning(f"Ranked customer search failed, using substring fallback: {exc}")
            IdentityMonitoring.record_search_fallback()
            response.results = self._fallback_search(analyzed, limit)
            response.degraded = True

        IdentityMonitoring.record_search(
            search_type=analyzed.search_type,
            degraded=response.degraded,
            duration_seconds=time.perf_counter() - started,
            result_count=len(response.results),
        )
        return response

    # ------------------------------------------------------------------ #
    # Stage A + B
    # ------------------------------------------------------------------ #
    def _candidate_filters(self, query: SearchQuery) -> list:
        doc = CustomerSearchDocument
        filters = []
        if query.search_type == "email" and query.email:
            filters.append(doc.search_emails.like(f"%{query.email}%"))
        elif query.search_type == "phone":
            digits = query.digits[-10:]
            if digits:
                filters.append(doc.search_phones.like(f"%{digits}%"))
        else:
            for token in query.tokens:
                padded_tokens = " " + doc.search_name_tokens
                filters.append(padded_tokens.like(f"% {token[:3]}%"))
                for start in range(max(1, len(token) - 2)):
                    gram = token[start : start + 3]
                    if len(gram) == 3:
                        filters.append(doc.search_name_tokens.like(f"%{gram}%"))
                filters.append(func.lower(func.coalesce(doc.company, "")).like(f"%{token[:3]}%"))
            filters.append(doc.search_text.like(f"%{query.text}%"))
            filters.append(doc.search_emails.like(f"%{query.text.replace(' ', '')}%"))

        if dialect_name(self.session) == "postgresql" and query.text:
            filters.extend(
                [
                    func.similarity(doc.search_name_tokens, query.text) > self.trgm_threshold,
                    func.similarity(func.coalesce(doc.company, ""), query.text) > self.trgm_threshold,
                    func.to_tsvector("simple", doc.search_text).op("@@")(
                        func.plainto_tsquery("simple", query.text)
                    ),
                ]
            )
        return filters

    def _candidate_order(self, query: SearchQuery) -> list:
        """Cheap relevance key applied before the candidate cap; exact hits sort first."""

        doc = CustomerSearchDocument
        weighted = []
        if query.search_type == "email" and query.email:
            weighted.append((doc.search_emails.like(f"% {query.email} %"), 4))
        elif query.search_type == "phone":
            digits = query.digits[-10:]
            if digits:
                weighted.append((doc.search_phones.like(f"%{digits} %"), 4))
        elif query.tokens:
            padded_tokens = " " + doc.search_name_tokens + " "
            weighted.append((doc.search_name_tokens == query.text, 4))
            for token in query.tokens:
                weighted.append((padded_tokens.like(f"% {token} %"), 2))
                weighted.append((padded_tokens.like(f"% {token[:3]}%"), 1))

        order = []
        if weighted:
            scores = [case((condition, weight), else_=0) for condition, weight in weighted]
            order.append(sum(scores[1:], scores[0]).desc())
        if dialect_name(self.session) == "postgresql" and query.search_type == "name" and query.text:
            order.append(func.similarity(doc.search_name_tokens, query.text).desc())
        order.extend([doc.customer_updated_at.desc(), doc.customer_id.desc()])
        return order

    def _ranked_search(self, query: SearchQuery, limit: int) -> list[RankedCustomer]:
        filters = self._candidate_filters(query)
        if not filters:
            return []
        candidates = self.session.scalars(
            select(CustomerSearchDocument)
            .where(or_(*filters))
            .order_by(*self._candidate_order(query))
            .limit(self.candidate_limit)
        ).all()

        scored = []
        for doc in candidates:
            breakdown = score_candidate(query, doc)
            if breakdown.total < self.min_score:
                continue
            scored.append((rank_key(breakdown.total, doc.is_vip, doc.customer_updated_at, doc.customer_id), doc, breakdown))
        scored.sort(key=lambda item: item[0])

        return [
            RankedCustomer(
                customer_id=doc.customer_id,
                first_name=doc.first_name,
                last_name=doc.last_name,
                company=doc.company,
                primary_email=doc.primary_email,
                primary_phone=doc.primary_phone,
                is_vip=bool(doc.is_vip),
                score=breakdown.total,
                match_reasons=tuple(breakdown.reasons),
                providers=tuple(doc.identity_providers or ()),
            )
            for _, doc, breakdown in scored[:limit]
        ]

    # ------------------------------------------------------------------ #
    # Degraded path
    # ------------------------------------------------------------------ #
    def _fallback_search(self, query: SearchQuery, limit: int) -> list[RankedCustomer]:
        identity_ids = select(CustomerIdentity.customer_id)
        if query.search_type == "email":
            needle = query.email or query.raw.lower()
            condition = or_(
                Customer.primary_email.ilike(f"%{needle}%"),
                Customer.id.in_(identity_ids.where(CustomerIdentity.email.ilike(f"%{needle}%"))),
            )
            exact = func.lower(Customer.primary_email) == needle
        elif query.search_type == "phone":
            digits = phone_digits(query.raw)[-10:]
            if not digits:
                return []
            condition = or_(
                Customer.primary_phone.like(f"%{digits}%"),
                Customer.id.in_(identity_ids.where(CustomerIdentity.phone.like(f"%{digits}%"))),
            )
            exact = Customer.primary_phone.like(f"%{digits}")
        else:
            needle = query.raw.lower()
            full_name = func.coalesce(Customer.first_name, "") + " " + func.coalesce(Customer.last_name, "")
            condition = or_(
                Customer.first_name.ilike(f"%{needle}%"),
                Customer.last_name.ilike(f"%{needle}%"),
                Customer.company.ilike(f"%{needle}%"),
                full_name.ilike(f"%{needle}%"),
                Customer.id.in_(identity_ids.where(CustomerIdentity.email.ilike(f"%{needle}%"))),
            )
            exact = or_(
                func.lower(Customer.first_name) == needle,
                func.lower(Customer.last_name) == needle,
                func.lower(full_name) == needle,
            )

        customers = self.session.scalars(
            select(Customer)
            .where(condition)
            .order_by(
                case((exact, 0), else_=1),
                Customer.is_vip.desc(),
                Customer.updated_at.desc(),
                Customer.id.desc(),
            )
            .limit(limit)
        ).all()

        providers = self._providers_for([customer.id for customer in customers])
        return [
            RankedCustomer(
                customer_id=customer.id,
                first_name=customer.first_name,
                last_name=customer.last_name,
                company=customer.company,
                primary_email=customer.primary_email,
                primary_phone=customer.primary_phone,
                is_vip=bool(customer.is_vip),
                score=None,
                providers=providers.get(customer.id, ()),
            )
            for customer in customers
        ]

    def _providers_for(self, customer_ids: list[int]) -> dict[int, tuple[str, ...]]:
        if not customer_ids:
            return {}
        rows = self.session.execute(
            select(CustomerIdentity.customer_id, CustomerIdentity.provider)
            .where(CustomerIdentity.customer_id.in_(customer_ids))
            .distinct()
        ).all()
        grouped: dict[int, set[str]] = {}
        for customer_id, provider in rows:
            grouped.setdefault(customer_id, set()).add(provider.value)
        return {customer_id: tuple(sorted(values)) for customer_id, values in grouped.items()}


def search_customers(query: str | None, limit: int | None = None, *, session: Session | None = None):
    return CustomerSearchService(session=session).search(query, limit)


__all__ = ["CustomerSearchResponse", "CustomerSearchService", "RankedCustomer", "search_customers"]
