"""
Merge service for operator-driven customer consolidation.

Candidates are recomputed on every call from shared emails and phones; a
merge is never applied automatically. ``merge_customers`` moves every
customer-owned row onto the surviving customer and deletes the losers in a
single transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Literal

from flask import current_app
from sqlalchemy import delete, func, select, union, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.monitoring import IdentityMonitoring
from customer_hub.models import (
    CUSTOMER_OWNED_MODELS,
    ONE_PER_CUSTOMER_MODELS,
    Customer,
    CustomerIdentity,
    CustomerMergeLog,
    CustomerSearchDocument,
    db,
)

from .search_documents import refresh_search_document

MatchedSignal = Literal["email", "phone"]
AmbiguousSignal = Literal["email", "phone", "address_hash"]

# Customer fields a merge may fill on the survivor when it has no value yet.
_ABSORBED_FIELDS = ("primary_email", "primary_phone", "first_name", "last_name", "company", "credit_risk_level")


class MergeValidationError(ValueError):
    """Raised when a merge request is rejected before any write happens."""


@dataclass(frozen=True)
class MergeCandidate:
    """Another customer sharing an email and/or phone with the one under review."""

    customer_id: int
    first_name: str | None
    last_name: str | None
    company: str | None
    primary_email: str | None
    primary_phone: str | None
    matched_on: tuple[MatchedSignal, ...]


@dataclass(frozen=True)
class MergeResult:
    primary_customer_id: int
    merged_customer_ids: tuple[int, ...]
    repointed: dict[str, int]
    merge_log_id: int | None = None


@dataclass(frozen=True)
class AmbiguousGroup:
    """One shared identity value that points at several customers."""

    signal: AmbiguousSignal
    value: str
    customer_ids: tuple[int, ...] = field(default_factory=tuple)


def _customer_snapshot(customer: Customer) -> dict:
    return {
        "primary_email": customer.primary_email,
        "primary_phone": customer.primary_phone,
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "company": customer.company,
        "is_vip": bool(customer.is_vip),
        "credit_risk_level": customer.credit_risk_level,
        "created_at": customer.created_at.isoformat() if customer.created_at else None,
    }


class MergeService:
    """Service for merge candidate discovery and customer merges."""

    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    # ------------------------------------------------------------------ #
    # Candidates
    # ------------------------------------------------------------------ #
    def find_merge_candidates(self, customer_id: int) -> list[MergeCandidate]:
        """
        Find other customers that share an email or phone with ``customer_id``.

        Args:
            customer_id: Customer under review

        Returns:
            Candidates ordered by number of matched signals, then id.
            Empty when the customer does not exist.
        """

        customer = self.session.get(Customer, customer_id)
        if customer is None:
            return []

        identity_rows = self.session.execute(
            select(CustomerIdentity.email, CustomerIdentity.phone).where(CustomerIdentity.customer_id == customer_id)
        ).all()
        emails = {value.lower() for value in [customer.primary_email, *(row.email for row in identity_rows)] if value}
        phones = {value for value in [customer.primary_phone, *(row.phone for row in identity_rows)] if value}

        matches: dict[int, set[str]] = {}
        if emails:
            for other_id in self._customers_with_emails(emails):
                matches.setdefault(other_id, set()).add("email")
        if phones:
            for other_id in self._customers_with_phones(phones):
                matches.setdefault(other_id, set()).add("phone")
        matches.pop(customer_id, None)
        if not matches:
            return []

        others = self.session.scalars(select(Customer).where(Customer.id.in_(list(matches)))).all()
        candidates = [
            MergeCandidate(
                customer_id=other.id,
                first_name=other.first_name,
                last_name=other.last_name,
                company=other.company,
                primary_email=other.primary_email,
                primary_phone=other.primary_phone,
                matched_on=tuple(sorted(matches[other.id])),
            )
            for other in others
        ]
        candidates.sort(key=lambda candidate: (-len(candidate.matched_on), candidate.customer_id))
        return candidates

    def _customers_with_emails(self, emails: set[str]) -> set[int]:
        ids = set(self.session.scalars(select(Customer.id).where(func.lower(Customer.primary_email).in_(emails))))
        ids.update(
            self.session.scalars(
                select(CustomerIdentity.customer_id).where(func.lower(CustomerIdentity.email).in_(emails))
            )
        )
        return ids

    def _customers_with_phones(self, phones: set[str]) -> set[int]:
        ids = set(self.session.scalars(select(Customer.id).where(Customer.primary_phone.in_(phones))))
        ids.update(
            self.session.scalars(select(CustomerIdentity.customer_id).where(CustomerIdentity.phone.in_(phones)))
        )
        return ids

    # ------------------------------------------------------------------ #
    # Merge
    # ------------------------------------------------------------------ #
    def _validate_merge(self, primary_id: int, merge_ids: Iterable[int]) -> list[int]:
        loser_ids: list[int] = []
        for raw_id in merge_ids:
            customer_id = int(raw_id)
            if customer_id not in loser_ids:
                loser_ids.append(customer_id)

        if primary_id in loser_ids:
            raise MergeValidationError(f"Customer {primary_id} cannot be merged into itself")
        if not loser_ids:
            raise MergeValidationError("Merge requires at least one customer to merge into the primary")

        known = set(self.session.scalars(select(Customer.id).where(Customer.id.in_([primary_id, *loser_ids]))))
        missing = [customer_id for customer_id in [primary_id, *loser_ids] if customer_id not in known]
        if missing:
            raise MergeValidationError(f"Customer(s) not found: {', '.join(str(value) for value in missing)}")
        return loser_ids

    def merge_customers(
        self,
        primary_id: int,
        merge_ids: Iterable[int],
        *,
        performed_by: str | None = None,
    ) -> MergeResult:
        """
        Merge ``merge_ids`` into ``primary_id`` atomically.

        Every customer-owned row is re-pointed to the primary, one-per-customer
        rows keep the primary's copy when it has one, and the losing customers
        are deleted. The transaction is committed on success and rolled back
        on any database error.

        Args:
            primary_id: Surviving customer
            merge_ids: Customers to fold into the primary
            performed_by: Operator identifier recorded in the merge log

        Returns:
            MergeResult with per-table counts of re-pointed rows

        Raises:
            MergeValidationError: For self-merges, empty merge sets and unknown ids
        """

        loser_ids = self._validate_merge(primary_id, merge_ids)

        try:
            primary = self.session.get(Customer, primary_id)
            losers = self.session.scalars(
                select(Customer).where(Customer.id.in_(loser_ids)).order_by(Customer.id)
            ).all()
            snapshot = {str(loser.id): _customer_snapshot(loser) for loser in losers}
            self._absorb_fields(primary, losers)

            repointed: dict[str, int] = {}
            for model in (CustomerIdentity, *CUSTOMER_OWNED_MODELS):
                result = self.session.execute(
                    update(model)
                    .where(model.customer_id.in_(loser_ids))
                    .values(customer_id=primary_id)
                    .execution_options(synchronize_session="evaluate")
                )
                repointed[model.__tablename__] = result.rowcount or 0
            for model in ONE_PER_CUSTOMER_MODELS:
                repointed[model.__tablename__] = self._merge_single_row(model, primary_id, loser_ids)

            self.session.execute(
                delete(CustomerSearchDocument).where(CustomerSearchDocument.customer_id.in_(loser_ids))
            )
            merge_log = CustomerMergeLog(
                primary_customer_id=primary_id,
                merged_customer_ids=loser_ids,
                snapshot_json=snapshot,
                repointed_counts=repointed,
                performed_by=performed_by,
            )
            self.session.add(merge_log)
            self.session.flush()

            for loser in losers:
                self.session.expunge(loser)
            self.session.execute(
                delete(Customer).where(Customer.id.in_(loser_ids)).execution_options(synchronize_session=False)
            )
            refresh_search_document(primary_id, session=self.session)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            IdentityMonitoring.record_merge(status="failed")
            current_app.logger.error(f"Merge of customers {loser_ids} into {primary_id} failed: {exc}")
            raise

        IdentityMonitoring.record_merge(status="merged", merged_count=len(loser_ids))
        current_app.logger.info(
            f"Merged customers {loser_ids} into {primary_id} by {performed_by or 'unknown operator'}: {repointed}"
        )
        return MergeResult(
            primary_customer_id=primary_id,
            merged_customer_ids=tuple(loser_ids),
            repointed=repointed,
            merge_log_id=merge_log.id,
        )

    def _absorb_fields(self, primary: Customer, losers: list[Customer]) -> None:
        for attr in _ABSORBED_FIELDS:
            if getattr(primary, attr):
                continue
            for loser in losers:
                value = getattr(loser, attr)
                if value:
                    setattr(primary, attr, value)
                    break
        if any(loser.is_vip for loser in losers):
            primary.is_vip = True

    def _merge_single_row(self, model, primary_id: int, loser_ids: list[int]) -> int:
        """
        Fold one-per-customer rows: the primary's row wins, otherwise the most
        recently updated losing row is re-pointed and the rest dropped.
        """

        loser_rows = self.session.scalars(
            select(model).where(model.customer_id.in_(loser_ids)).order_by(model.updated_at.desc(), model.id.desc())
        ).all()
        if not loser_rows:
            return 0

        primary_has_row = self.session.scalar(select(model.id).where(model.customer_id == primary_id)) is not None
        keeper = None if primary_has_row else loser_rows[0]
        for row in loser_rows:
            if row is not keeper:
                self.session.delete(row)
        self.session.flush()
        if keeper is None:
            return 0
        keeper.customer_id = primary_id
        self.session.flush()
        return 1

    # ------------------------------------------------------------------ #
    # Reconciliation report
    # ------------------------------------------------------------------ #
    def find_ambiguous_groups(self, limit: int = 100) -> list[AmbiguousGroup]:
        """
        Identity values (email, phone, address hash) shared by several customers.

        Feeds the post-hoc reconciliation pass for duplicate customers the
        email/phone create path can produce under concurrent first sightings.
        """

        groups: list[AmbiguousGroup] = []
        sources: list[tuple[AmbiguousSignal, object]] = [
            (
                "email",
                union(
                    select(
                        func.lower(CustomerIdentity.email).label("value"),
                        CustomerIdentity.customer_id.label("customer_id"),
                    ).where(CustomerIdentity.email.is_not(None)),
                    select(func.lower(Customer.primary_email), Customer.id).where(Customer.primary_email.is_not(None)),
                ).subquery(),
            ),
            (
                "phone",
                union(
                    select(
                        CustomerIdentity.phone.label("value"),
                        CustomerIdentity.customer_id.label("customer_id"),
                    ).where(CustomerIdentity.phone.is_not(None)),
                    select(Customer.primary_phone, Customer.id).where(Customer.primary_phone.is_not(None)),
                ).subquery(),
            ),
            (
                "address_hash",
                select(
                    CustomerIdentity.metadata_json["address_hash"].as_string().label("value"),
                    CustomerIdentity.customer_id.label("customer_id"),
                ).subquery(),
            ),
        ]

        for signal, source in sources:
            shared_values = self.session.scalars(
                select(source.c.value)
                .where(source.c.value.is_not(None))
                .group_by(source.c.value)
                .having(func.count(func.distinct(source.c.customer_id)) > 1)
                .order_by(func.count(func.distinct(source.c.customer_id)).desc(), source.c.value)
                .limit(limit)
            ).all()
            if not shared_values:
                continue
            owners: dict[str, set[int]] = {}
            for value, customer_id in self.session.execute(
                select(source.c.value, source.c.customer_id).where(source.c.value.in_(shared_values))
            ):
                owners.setdefault(value, set()).add(customer_id)
            groups.extend(
                AmbiguousGroup(signal=signal, value=value, customer_ids=tuple(sorted(owners.get(value, ()))))
                for value in shared_values
            )
        return groups


__all__ = [
    "AmbiguousGroup",
    "MergeCandidate",
    "MergeResult",
    "MergeService",
    "MergeValidationError",
]
