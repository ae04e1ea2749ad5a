"""
Tests for IdentityResolver.

Covers the create / update / link / ambiguous decisions, the address-hash
fallback for redacted marketplace records, email gating and null-only field
filling.
"""

import pytest

from customer_hub.identity import IdentityInput, IdentityResolver, resolve_identity
from customer_hub.identity.address import address_fingerprint
from customer_hub.models import Customer, CustomerIdentity, CustomerSearchDocument, IdentityProvider, db

ADDRESS = {
    "name": "Jane Doe",
    "addressLine1": "1 Elm St",
    "city": "Austin",
    "stateOrRegion": "TX",
    "postalCode": "78701",
}


@pytest.fixture
def resolver(app):
    return IdentityResolver()


def test_new_identity_creates_customer(resolver):
    result = resolver.resolve(
        IdentityInput(
            provider="storefront",
            external_id="sf-1",
            email=" Jane@Example.com ",
            phone="(555) 123-4567",
            first_name="Jane",
            last_name="Doe",
        )
    )
    db.session.commit()

    assert result.action == "created"
    assert result.matched_by == "none"
    customer = db.session.get(Customer, result.customer_id)
    assert customer.primary_email == "jane@example.com"
    assert customer.primary_phone == "+15551234567"

    identity = db.session.get(CustomerIdentity, result.identity_id)
    assert identity.provider == IdentityProvider.STOREFRONT
    assert identity.external_id == "sf-1"

    document = db.session.get(CustomerSearchDocument, customer.id)
    assert document is not None
    assert document.all_emails == ["jane@example.com"]


def test_repeated_identity_is_idempotent(resolver):
    identity = IdentityInput(provider="storefront", external_id="sf-1", email="jane@example.com", first_name="Jane")
    first = resolver.resolve(identity)
    second = resolver.resolve(identity)
    db.session.commit()

    assert first.action == "created"
    assert second.action == "updated"
    assert second.matched_by == "external_id"
    assert second.customer_id == first.customer_id
    assert second.identity_id == first.identity_id
    assert CustomerIdentity.query.count() == 1
    assert Customer.query.count() == 1


def test_exact_hit_refreshes_names_and_keeps_known_contact_details(resolver):
    first = resolver.resolve(
        IdentityInput(provider="accounting", external_id="qb-7", email="jane@example.com", first_name="Jane")
    )
    resolver.resolve(IdentityInput(provider="accounting", external_id="qb-7", first_name="Janet", last_name="Doe"))
    db.session.commit()

    customer = db.session.get(Customer, first.customer_id)
    identity = db.session.get(CustomerIdentity, first.identity_id)
    assert customer.first_name == "Janet"
    assert customer.last_name == "Doe"
    assert identity.email == "jane@example.com"


def test_single_email_match_links_identity(resolver, make_customer):
    existing = make_customer(first_name="Jane", email="jane@example.com")

    result = resolver.resolve(IdentityInput(provider="marketplace", external_id="mk-9", email="JANE@example.com"))
    db.session.commit()

    assert result.action == "linked"
    assert result.matched_by == "email"
    assert result.customer_id == existing.id
    linked = CustomerIdentity.query.filter_by(external_id="mk-9").one()
    assert linked.customer_id == existing.id
    assert Customer.query.count() == 1


def test_email_match_wins_over_phone_match(resolver, make_customer):
    by_email = make_customer(first_name="Email", email="jane@example.com")
    make_customer(first_name="Phone", phone="+15551234567")

    result = resolver.resolve(
        IdentityInput(provider="storefront", external_id="sf-2", email="jane@example.com", phone="555-123-4567")
    )

    assert result.action == "linked"
    assert result.matched_by == "email"
    assert result.customer_id == by_email.id


def test_phone_fallback_when_email_is_unknown(resolver, make_customer):
    existing = make_customer(first_name="Jane", phone="+15551234567")

    result = resolver.resolve(
        IdentityInput(provider="fulfillment", external_id="ship-1", email="new@example.com", phone="555.123.4567")
    )
    db.session.commit()

    assert result.action == "linked"
    assert result.matched_by == "phone"
    assert result.customer_id == existing.id
    # The unknown email fills the empty primary email
    assert db.session.get(Customer, existing.id).primary_email == "new@example.com"


def test_multiple_email_owners_is_ambiguous(resolver, make_customer):
    first = make_customer(first_name="Jane", identities=[("storefront", "sf-a", "shared@example.com", None)])
    second = make_customer(first_name="John", identities=[("accounting", "qb-b", "shared@example.com", None)])
    identities_before = CustomerIdentity.query.count()

    result = resolver.resolve(IdentityInput(provider="marketplace", external_id="mk-1", email="shared@example.com"))

    assert result.action == "ambiguous"
    assert result.is_ambiguous
    assert result.customer_id is None
    assert result.matched_by == "email"
    assert result.candidate_ids == (first.id, second.id)
    assert CustomerIdentity.query.count() == identities_before
    assert Customer.query.count() == 2


def test_link_fills_only_missing_fields(resolver, make_customer):
    existing = make_customer(first_name="Jane", email="jane@example.com")

    resolver.resolve(
        IdentityInput(
            provider="marketplace",
            external_id="mk-2",
            email="jane@example.com",
            first_name="Janet",
            last_name="Doe",
            company="Acme",
        )
    )
    db.session.commit()

    customer = db.session.get(Customer, existing.id)
    assert customer.first_name == "Jane"
    assert customer.last_name == "Doe"
    assert customer.company == "Acme"


def test_redacted_marketplace_order_uses_address_hash(resolver):
    record = IdentityInput(provider="marketplace", first_name="Jane", last_name="Doe")

    first = resolver.resolve(record, address=ADDRESS)
    repeat_address = {**ADDRESS, "name": "  JANE DOE ", "addressLine1": "1 Elm St."}
    second = resolver.resolve(record, address=repeat_address)
    db.session.commit()

    expected_hash = address_fingerprint(ADDRESS)
    assert first.action == "created"
    assert first.external_id == f"address_hash:{expected_hash}"
    assert second.action == "updated"
    assert second.matched_by == "address_hash"
    assert second.customer_id == first.customer_id

    identity = CustomerIdentity.query.filter_by(external_id=f"address_hash:{expected_hash}").one()
    assert identity.metadata_json["address_hash"] == expected_hash
    assert identity.metadata_json["has_email"] is False


def test_buyers_with_email_sharing_an_address_stay_separate(resolver):
    shipping = {**ADDRESS, "name": "John Doe"}

    jane = resolver.resolve(
        IdentityInput(provider="marketplace", email="jane@example.com", first_name="Jane"), address=shipping
    )
    john = resolver.resolve(
        IdentityInput(provider="marketplace", email="john@example.com", first_name="John"), address=shipping
    )
    db.session.commit()

    assert jane.action == "created"
    assert john.action == "created"
    assert john.customer_id != jane.customer_id
    assert jane.external_id is None
    assert db.session.get(Customer, jane.customer_id).first_name == "Jane"
    assert CustomerIdentity.query.filter(CustomerIdentity.external_id.like("address_hash:%")).count() == 0


def test_phone_only_record_does_not_use_address_hash(resolver):
    result = resolver.resolve(IdentityInput(provider="marketplace", phone="555-123-4567"), address=ADDRESS)

    assert result.action == "created"
    assert result.external_id is None


def test_sparse_address_is_not_fingerprinted(resolver):
    result = resolver.resolve(
        IdentityInput(provider="marketplace", first_name="Jane"),
        address={"name": "Jane"},
    )

    assert result.action == "created"
    assert result.external_id is None


def test_record_without_any_signal_still_creates_customer(resolver):
    result = resolver.resolve(IdentityInput(provider="manual", first_name="Walk-in"))
    db.session.commit()

    assert result.action == "created"
    assert db.session.get(Customer, result.customer_id).primary_email is None


def test_placeholder_email_is_ignored(resolver, make_customer):
    make_customer(first_name="Someone", identities=[("storefront", "sf-x", None, None)])

    result = resolver.resolve(IdentityInput(provider="marketplace", external_id="mk-3", email="n/a"))
    db.session.commit()

    assert result.action == "created"
    identity = db.session.get(CustomerIdentity, result.identity_id)
    assert identity.email is None


def test_email_validation_can_be_disabled(app):
    app.config["IDENTITY_VALIDATE_EMAILS"] = False
    result = IdentityResolver().resolve(IdentityInput(provider="manual", external_id="m-1", email="n/a"))

    assert db.session.get(CustomerIdentity, result.identity_id).email == "n/a"


def test_unknown_provider_is_rejected(resolver):
    with pytest.raises(ValueError, match="Unknown identity provider"):
        resolver.resolve(IdentityInput(provider="fax-machine", external_id="1"))


def test_resolve_identity_helper(app):
    result = resolve_identity(IdentityInput(provider=IdentityProvider.SELF_REPORTED, email="me@example.com"))
    assert result.action == "created"
    repeat = resolve_identity(IdentityInput(provider="self_reported", email="me@example.com"))
    assert repeat.action == "updated"
    assert repeat.customer_id == result.customer_id


def _lose_first_lookup(monkeypatch, resolver):
    """Make the first exact-identity lookup miss, as if another run inserted the row just after it."""

    real_lookup = resolver._find_identity
    calls = []

    def lookup(provider, external_id):
        calls.append(external_id)
        if len(calls) == 1:
            return None
        return real_lookup(provider, external_id)

    monkeypatch.setattr(resolver, "_find_identity", lookup)
    return calls


def test_concurrent_create_converges_on_existing_identity(resolver, make_customer, monkeypatch):
    owner = make_customer(first_name="Jane", identities=[("storefront", "sf-1", "jane@example.com", None)])
    calls = _lose_first_lookup(monkeypatch, resolver)

    result = resolver.resolve(
        IdentityInput(provider="storefront", external_id="sf-1", email="new@example.com", first_name="Janet")
    )
    db.session.commit()

    assert calls == ["sf-1", "sf-1"]
    assert result.action == "updated"
    assert result.customer_id == owner.id
    assert Customer.query.count() == 1
    assert CustomerIdentity.query.filter_by(external_id="sf-1").count() == 1
    assert db.session.get(Customer, owner.id).first_name == "Janet"


def test_concurrent_link_converges_on_stored_owner(resolver, make_customer, monkeypatch):
    owner = make_customer(first_name="Jane", identities=[("storefront", "sf-1", None, None)])
    email_owner = make_customer(first_name="Janet", email="jane@example.com")
    _lose_first_lookup(monkeypatch, resolver)

    result = resolver.resolve(IdentityInput(provider="storefront", external_id="sf-1", email="jane@example.com"))
    db.session.commit()

    assert result.action == "updated"
    assert result.customer_id == owner.id
    assert Customer.query.count() == 2
    identity = CustomerIdentity.query.filter_by(external_id="sf-1").one()
    assert identity.customer_id == owner.id
    assert identity.email == "jane@example.com"
    assert CustomerIdentity.query.filter_by(customer_id=email_owner.id).count() == 0
