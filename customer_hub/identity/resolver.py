"""
Identity resolution: decide whether an inbound record belongs to a known
customer, a new customer, or needs human review.

Decision order:

1. Exact ``(provider, external_id)`` hit -> ``updated``.
2. No external id but an address -> retry 1 with ``address_hash:<hash>``.
3. Customers sharing the email (or, when no email matched, the phone):
   none -> ``created``, one -> ``linked``, several -> ``ambiguous``.

Identity rows are written with ``INSERT ... ON CONFLICT`` keyed on
``(provider, external_id)`` so two sync runs seeing the same record for the
first time converge on one identity instead of failing or duplicating.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Literal, Mapping

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config.monitoring import IdentityMonitoring
from customer_hub.models import Customer, CustomerIdentity, IdentityProvider, db
from customer_hub.models.base import utc_now
from customer_hub.utils.db import upsert_insert

from .address import AddressInput, address_external_id, compute_address_hash
from .normalize import clean_optional, is_valid_email, normalize_email, normalize_phone
from .search_documents import refresh_search_document

ResolutionAction = Literal["created", "updated", "linked", "ambiguous"]
MatchSignal = Literal["external_id", "address_hash", "email", "phone", "none"]


@dataclass(frozen=True)
class IdentityInput:
    """Identifying fields a provider record carries; everything is optional but the provider."""

    provider: IdentityProvider | str
    external_id: str | None = None
    email: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    metadata: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class ResolutionResult:
    """
    Outcome of resolving one record.

    Attributes:
        action: What the resolver did.
        customer_id: Owning customer, ``None`` when ambiguous.
        matched_by: Signal that decided the outcome (``none`` for creations).
        identity_id: Identity row created or refreshed.
        external_id: Effective external id, including synthetic address ids.
        candidate_ids: Competing customers when ambiguous.
    """

    action: ResolutionAction
    customer_id: int | None
    matched_by: MatchSignal
    identity_id: int | None = None
    external_id: str | None = None
    candidate_ids: tuple[int, ...] = ()

    @property
    def is_ambiguous(self) -> bool:
        return self.action == "ambiguous"


@dataclass(frozen=True)
class _CleanIdentity:
    provider: IdentityProvider
    external_id: str | None
    email: str | None
    phone: str | None
    first_name: str | None
    last_name: str | None
    company: str | None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def has_signal(self) -> bool:
        return bool(self.external_id or self.email or self.phone)


class IdentityResolver:
    """Stateless resolver; every decision is derived from the database."""

    def __init__(self, session: Session | None = None, *, validate_emails: bool | None = None):
        self.session = session or db.session
        if validate_emails is None:
            validate_emails = current_app.config.get("IDENTITY_VALIDATE_EMAILS", True)
        self.validate_emails = validate_emails

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def resolve(
        self,
        identity: IdentityInput,
        address: AddressInput | Mapping[str, Any] | None = None,
    ) -> ResolutionResult:
        clean = self._clean(identity)
        key_signal: MatchSignal = "external_id"

        # Only records with no email or phone are keyed on the shipping address
        if clean.external_id is None and clean.email is None and clean.phone is None and address is not None:
            address_hash = compute_address_hash(address)
            if address_hash:
                clean = replace(
                    clean,
                    external_id=address_external_id(address_hash),
                    metadata={**clean.metadata, "address_hash": address_hash, "has_email": False},
                )
                key_signal = "address_hash"
            else:
                current_app.logger.debug(
                    f"Address for {clean.provider.value} record too sparse to fingerprint; skipping fallback"
                )

        if clean.external_id:
            existing = self._find_identity(clean.provider, clean.external_id)
            if existing is not None:
                return self._record(self._refresh_existing(existing, clean, key_signal), clean.provider)

        candidate_ids, matched_by = self._find_candidates(clean.email, clean.phone)
        if len(candidate_ids) > 1:
            current_app.logger.warning(
                f"Ambiguous {clean.provider.value} identity {clean.external_id or '<no external id>'}: "
                f"{matched_by} matches customers {list(candidate_ids)}"
            )
            return self._record(
                ResolutionResult(
                    action="ambiguous",
                    customer_id=None,
                    matched_by=matched_by,
                    external_id=clean.external_id,
                    candidate_ids=candidate_ids,
                ),
                clean.provider,
            )
        if candidate_ids:
            return self._record(self._link(candidate_ids[0], clean, matched_by, key_signal), clean.provider)

        if not clean.has_signal:
            current_app.logger.info(
                f"Creating customer from {clean.provider.value} record with no identifying signal"
            )
        return self._record(self._create(clean, key_signal), clean.provider)

    # ------------------------------------------------------------------ #
    # Decision branches
    # ------------------------------------------------------------------ #
    def _refresh_existing(
        self,
        identity: CustomerIdentity,
        clean: _CleanIdentity,
        key_signal: MatchSignal,
    ) -> ResolutionResult:
        metadata = {**(identity.metadata_json or {}), **clean.metadata}
        identity_id, customer_id = self._upsert_identity(identity.customer_id, clean, metadata)
        self.session.expire(identity)

        customer = self.session.get(Customer, customer_id)
        if clean.first_name:
            customer.first_name = clean.first_name
        if clean.last_name:
            customer.last_name = clean.last_name
        if clean.company:
            customer.company = clean.company
        self._fill_missing(customer, clean)
        self._after_write(customer_id)
        return ResolutionResult(
            action="updated",
            customer_id=customer_id,
            matched_by=key_signal,
            identity_id=identity_id,
            external_id=clean.external_id,
        )

    def _link(
        self,
        customer_id: int,
        clean: _CleanIdentity,
        matched_by: MatchSignal,
        key_signal: MatchSignal,
    ) -> ResolutionResult:
        customer = self.session.get(Customer, customer_id)

        if clean.external_id is None:
            repeat = self._find_signal_identity(customer_id, clean)
            if repeat is not None:
                repeat.metadata_json = {**(repeat.metadata_json or {}), **clean.metadata}
                self._fill_missing(customer, clean)
                self._after_write(customer_id)
                return ResolutionResult(
                    action="updated",
                    customer_id=customer_id,
                    matched_by=matched_by,
                    identity_id=repeat.id,
                )

        identity_id = self._claim_identity(customer_id, clean)
        if identity_id is None:
            return self._converge_on_winner(clean, key_signal)

        self._fill_missing(customer, clean)
        self._after_write(customer_id)
        current_app.logger.info(
            f"Linked {clean.provider.value} identity {clean.external_id or '<no external id>'} "
            f"to customer {customer_id} by {matched_by}"
        )
        return ResolutionResult(
            action="linked",
            customer_id=customer_id,
            matched_by=matched_by,
            identity_id=identity_id,
            external_id=clean.external_id,
        )

    def _create(self, clean: _CleanIdentity, key_signal: MatchSignal) -> ResolutionResult:
        customer = Customer(
            primary_email=clean.email,
            primary_phone=clean.phone,
            first_name=clean.first_name,
            last_name=clean.last_name,
            company=clean.company,
        )
        self.session.add(customer)
        self.session.flush()

        identity_id = self._claim_identity(customer.id, clean)
        if identity_id is None:
            # Another run inserted the same (provider, external_id) after our lookup.
            self.session.delete(customer)
            self.session.flush()
            return self._converge_on_winner(clean, key_signal)

        self._after_write(customer.id)
        current_app.logger.info(
            f"Created customer {customer.id} from {clean.provider.value} identity "
            f"{clean.external_id or '<no external id>'}"
        )
        return ResolutionResult(
            action="created",
            customer_id=customer.id,
            matched_by="none",
            identity_id=identity_id,
            external_id=clean.external_id,
        )

    def _converge_on_winner(self, clean: _CleanIdentity, key_signal: MatchSignal) -> ResolutionResult:
        winner = self._find_identity(clean.provider, clean.external_id)
        if winner is None:
            raise RuntimeError(
                f"Identity {clean.provider.value}:{clean.external_id} conflicted but could not be reloaded"
            )
        current_app.logger.info(
            f"Concurrent insert for {clean.provider.value}:{clean.external_id}; using customer {winner.customer_id}"
        )
        return self._refresh_existing(winner, clean, key_signal)

    # ------------------------------------------------------------------ #
    # Queries and writes
    # ------------------------------------------------------------------ #
    def _find_identity(self, provider: IdentityProvider, external_id: str) -> CustomerIdentity | None:
        return self.session.scalars(
            select(CustomerIdentity).where(
                CustomerIdentity.provider == provider,
                CustomerIdentity.external_id == external_id,
            )
        ).first()

    def _find_signal_identity(self, customer_id: int, clean: _CleanIdentity) -> CustomerIdentity | None:
        email_clause = (
            CustomerIdentity.email.is_(None) if clean.email is None else CustomerIdentity.email == clean.email
        )
        phone_clause = (
            CustomerIdentity.phone.is_(None) if clean.phone is None else CustomerIdentity.phone == clean.phone
        )
        return self.session.scalars(
            select(CustomerIdentity).where(
                CustomerIdentity.customer_id == customer_id,
                CustomerIdentity.provider == clean.provider,
                CustomerIdentity.external_id.is_(None),
                email_clause,
                phone_clause,
            )
        ).first()

    def _find_candidates(self, email: str | None, phone: str | None) -> tuple[tuple[int, ...], MatchSignal]:
        """Distinct customers owning the email, else the phone. Email wins when it matches anyone."""

        if email:
            ids = set(self.session.scalars(select(Customer.id).where(func.lower(Customer.primary_email) == email)))
            ids.update(
                self.session.scalars(
                    select(CustomerIdentity.customer_id).where(func.lower(CustomerIdentity.email) == email)
                )
            )
            if ids:
                return tuple(sorted(ids)), "email"
        if phone:
            ids = set(self.session.scalars(select(Customer.id).where(Customer.primary_phone == phone)))
            ids.update(
                self.session.scalars(select(CustomerIdentity.customer_id).where(CustomerIdentity.phone == phone))
            )
            if ids:
                return tuple(sorted(ids)), "phone"
        return (), "none"

    def _identity_values(self, customer_id: int, clean: _CleanIdentity, metadata: dict[str, Any]) -> dict:
        now = utc_now()
        return {
            "customer_id": customer_id,
            "provider": clean.provider,
            "external_id": clean.external_id,
            "email": clean.email,
            "phone": clean.phone,
            "metadata_json": metadata or None,
            "created_at": now,
            "updated_at": now,
        }

    def _claim_identity(self, customer_id: int, clean: _CleanIdentity) -> int | None:
        """Insert a new identity; ``None`` when the (provider, external_id) key is already taken."""

        stmt = upsert_insert(self.session, CustomerIdentity).values(
            **self._identity_values(customer_id, clean, clean.metadata)
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["provider", "external_id"]).returning(
            CustomerIdentity.id
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def _upsert_identity(
        self,
        customer_id: int,
        clean: _CleanIdentity,
        metadata: dict[str, Any],
    ) -> tuple[int, int]:
        """Insert-or-refresh keyed on (provider, external_id); the stored owner always wins."""

        stmt = upsert_insert(self.session, CustomerIdentity).values(
            **self._identity_values(customer_id, clean, metadata)
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["provider", "external_id"],
            set_={
                "email": func.coalesce(stmt.excluded.email, CustomerIdentity.email),
                "phone": func.coalesce(stmt.excluded.phone, CustomerIdentity.phone),
                "metadata_json": stmt.excluded.metadata_json,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(CustomerIdentity.id, CustomerIdentity.customer_id)
        row = self.session.execute(stmt).one()
        return row[0], row[1]

    def _fill_missing(self, customer: Customer, clean: _CleanIdentity) -> None:
        """Populate customer fields that are still empty; never overwrite."""

        for attr, value in (
            ("primary_email", clean.email),
            ("primary_phone", clean.phone),
            ("first_name", clean.first_name),
            ("last_name", clean.last_name),
            ("company", clean.company),
        ):
            if value and not getattr(customer, attr):
                setattr(customer, attr, value)

    def _after_write(self, customer_id: int) -> None:
        self.session.flush()
        refresh_search_document(customer_id, session=self.session)

    def _record(self, result: ResolutionResult, provider: IdentityProvider) -> ResolutionResult:
        IdentityMonitoring.record_resolution(provider=provider.value, action=result.action)
        return result

    # ------------------------------------------------------------------ #
    # Input cleaning
    # ------------------------------------------------------------------ #
    def _clean(self, identity: IdentityInput) -> _CleanIdentity:
        provider = IdentityProvider.coerce(identity.provider)
        email = normalize_email(identity.email)
        if email and self.validate_emails and not is_valid_email(email):
            current_app.logger.debug(f"Ignoring malformed email {email!r} from {provider.value} record")
            email = None
        return _CleanIdentity(
            provider=provider,
            external_id=clean_optional(identity.external_id),
            email=email,
            phone=normalize_phone(identity.phone),
            first_name=clean_optional(identity.first_name),
            last_name=clean_optional(identity.last_name),
            company=clean_optional(identity.company),
            metadata=dict(identity.metadata or {}),
        )


def resolve_identity(
    identity: IdentityInput,
    address: AddressInput | Mapping[str, Any] | None = None,
    *,
    session: Session | None = None,
) -> ResolutionResult:
    """Convenience wrapper around :class:`IdentityResolver`."""

    return IdentityResolver(session=session).resolve(identity, address)


__all__ = [
    "IdentityInput",
    "IdentityResolver",
    "ResolutionResult",
    "resolve_identity",
]
