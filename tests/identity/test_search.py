"""
Tests for ranked customer search and its substring fallback.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from customer_hub.identity import CustomerSearchService, IdentityInput, IdentityResolver, search_customers
from customer_hub.identity.search_documents import build_search_document, rebuild_all_search_documents
from customer_hub.models import Customer, CustomerSearchDocument, db


@pytest.fixture
def service(app):
    return CustomerSearchService()


def _touch(customer, days_ago):
    """Pin a customer's update time (and its search document) for tie-break tests."""
    stamp = datetime.now(timezone.utc) - timedelta(days=days_ago)
    db.session.execute(
        Customer.__table__.update().where(Customer.__table__.c.id == customer.id).values(updated_at=stamp)
    )
    db.session.execute(
        CustomerSearchDocument.__table__.update()
        .where(CustomerSearchDocument.__table__.c.customer_id == customer.id)
        .values(customer_updated_at=stamp)
    )
    db.session.commit()


def test_empty_query_returns_nothing(service, make_customer):
    make_customer(first_name="Jane", last_name="Doe")

    response = service.search("   ")

    assert response.results == []
    assert not response.degraded


def test_exact_full_name_ranks_first(service, make_customer):
    make_customer(first_name="Janet", last_name="Doerr")
    exact = make_customer(first_name="Jane", last_name="Doe")
    make_customer(first_name="John", last_name="Doe")

    response = service.search("Jane Doe")

    assert response.search_type == "name"
    assert response.customer_ids[0] == exact.id
    assert response.results[0].match_reasons[0] == "exact_full_name"


def test_swapped_name_is_found(service, make_customer):
    customer = make_customer(first_name="Jane", last_name="Doe")

    response = service.search("doe jane")

    assert response.customer_ids == [customer.id]


def test_exact_email_beats_fuzzy_matches(service, make_customer):
    make_customer(first_name="Jane", last_name="Example", email="jane@example.org")
    owner = make_customer(first_name="Someone", last_name="Else", email="jane@example.com")

    response = service.search("Jane@Example.com")

    assert response.search_type == "email"
    assert response.customer_ids[0] == owner.id
    assert response.results[0].match_reasons[0] == "exact_email"


def test_secondary_email_from_identity(service, make_customer):
    customer = make_customer(
        first_name="Jane",
        email="jane@work.com",
        identities=[("storefront", "sf-1", "jane@home.com", None)],
    )

    response = service.search("jane@home.com")

    assert response.customer_ids == [customer.id]
    assert "secondary_email" in response.results[0].match_reasons
    assert response.results[0].providers == ("storefront",)


def test_phone_search_ignores_formatting(service, make_customer):
    customer = make_customer(first_name="Jane", phone="+15551234567")
    make_customer(first_name="John", phone="+15559876543")

    response = service.search("(555) 123-4567")

    assert response.search_type == "phone"
    assert response.customer_ids == [customer.id]


def test_typo_tolerant_name_search(service, make_customer):
    customer = make_customer(first_name="Katherine", last_name="Johnson")

    response = service.search("Katherine Jonson")

    assert customer.id in response.customer_ids


def test_company_search(service, make_customer):
    customer = make_customer(company="Acme Rocket Supply")

    response = service.search("acme rocket")

    assert response.customer_ids[0] == customer.id


def test_ties_break_on_vip_then_recency(service, make_customer):
    older = make_customer(first_name="Sam", last_name="Lee")
    newer = make_customer(first_name="Sam", last_name="Lee")
    vip = make_customer(first_name="Sam", last_name="Lee", is_vip=True)
    _touch(older, days_ago=5)
    _touch(newer, days_ago=1)
    _touch(vip, days_ago=10)

    response = service.search("Sam Lee")

    assert response.customer_ids == [vip.id, newer.id, older.id]
    assert response.results[0].is_vip


def test_limit_is_respected(service, make_customer):
    for _ in range(5):
        make_customer(first_name="Alex", last_name="Kim")

    assert len(service.search("Alex Kim", limit=3).results) == 3


def test_exact_match_survives_candidate_cap(app, make_customer):
    app.config["SEARCH_CANDIDATE_LIMIT"] = 5
    target = make_customer(first_name="John", last_name="Smith")
    _touch(target, days_ago=30)
    for index in range(6):
        make_customer(first_name="Johnny", last_name=f"Smithson{index}")

    response = CustomerSearchService().search("john smith")

    assert response.customer_ids[0] == target.id
    assert response.results[0].match_reasons[0] == "exact_full_name"


def test_partial_phone_ranks_below_exact_number(service, make_customer):
    austin = make_customer(first_name="Jane", phone="+15125551234")
    dallas = make_customer(first_name="John", phone="+12145551234")

    exact = service.search("(512) 555-1234")
    partial = service.search("555-1234")

    assert exact.customer_ids == [austin.id]
    assert exact.results[0].match_reasons == ("exact_phone",)
    assert sorted(partial.customer_ids) == sorted([austin.id, dallas.id])
    assert {result.match_reasons for result in partial.results} == {("phone_suffix",)}


def test_weak_matches_are_dropped(service, make_customer):
    make_customer(first_name="Zachary", last_name="Quinlan")

    assert service.search("Bob").results == []


def test_search_sees_resolver_writes(app):
    IdentityResolver().resolve(
        IdentityInput(provider="storefront", external_id="sf-1", email="ada@example.com", first_name="Ada")
    )
    db.session.commit()

    response = search_customers("ada@example.com")

    assert len(response.results) == 1
    assert response.results[0].providers == ("storefront",)


def test_fallback_when_read_model_is_missing(service, make_customer):
    make_customer(first_name="Janet", last_name="Doe")
    exact = make_customer(first_name="Jane", last_name="Doe")
    db.session.execute(text("DROP TABLE customer_search_documents"))
    db.session.commit()

    response = service.search("jane")

    assert response.degraded
    assert response.customer_ids[0] == exact.id
    assert len(response.results) == 2
    assert response.results[0].score is None


def test_fallback_phone_and_email(service, make_customer):
    by_phone = make_customer(first_name="Jane", phone="+15551234567")
    by_email = make_customer(first_name="John", identities=[("storefront", "sf-1", "john@example.com", None)])
    db.session.execute(text("DROP TABLE customer_search_documents"))
    db.session.commit()

    assert service.search("555-123-4567").customer_ids == [by_phone.id]
    email_response = service.search("john@example.com")
    assert email_response.degraded
    assert email_response.customer_ids == [by_email.id]


def test_build_search_document_flattens_identities(make_customer):
    customer = make_customer(
        first_name="José",
        last_name="Núñez",
        email="jose@example.com",
        phone="+15551234567",
        identities=[("marketplace", "mk-1", "jn@example.com", "+15557654321")],
    )

    values = build_search_document(customer, list(customer.identities))

    assert values["search_name"] == "josenunez"
    assert values["search_name_tokens"] == "jose nunez"
    assert values["search_emails"] == " jose@example.com jn@example.com "
    assert values["search_phones"] == " 15551234567 15557654321 "
    assert values["identity_providers"] == ["marketplace"]


def test_rebuild_all_search_documents(make_customer):
    first = make_customer(first_name="Ada")
    make_customer(first_name="Grace")
    db.session.execute(CustomerSearchDocument.__table__.delete())
    db.session.commit()

    assert rebuild_all_search_documents() == 2
    assert db.session.get(CustomerSearchDocument, first.id).search_name == "ada"
