import json

from customer_hub.models import Customer, CustomerSearchDocument, db
from customer_hub.sync import SyncCursorStore


def test_search_command_lists_matches(runner, make_customer):
    customer = make_customer(first_name="Jane", last_name="Doe", email="jane@example.com", is_vip=True)

    result = runner.invoke(args=["customers", "search", "Jane Doe"])

    assert result.exit_code == 0, result.output
    assert f"#{customer.id}" in result.output
    assert "Jane Doe [VIP]" in result.output


def test_search_command_json(runner, make_customer):
    customer = make_customer(first_name="Jane", last_name="Doe", email="jane@example.com")

    result = runner.invoke(args=["customers", "search", "jane@example.com", "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["search_type"] == "email"
    assert payload["degraded"] is False
    assert payload["results"][0]["customer_id"] == customer.id
    assert "exact_email" in payload["results"][0]["match_reasons"]


def test_search_command_no_results(runner):
    result = runner.invoke(args=["customers", "search", "nobody"])

    assert result.exit_code == 0, result.output
    assert "No customers match 'nobody'." in result.output


def test_merge_candidates_command(runner, make_customer):
    primary = make_customer(first_name="Jane", email="jane@example.com")
    duplicate = make_customer(first_name="Janet", email="jane@example.com")

    result = runner.invoke(args=["customers", "merge-candidates", str(primary.id)])

    assert result.exit_code == 0, result.output
    assert f"#{duplicate.id}" in result.output
    assert "matched on: email" in result.output


def test_merge_candidates_command_none(runner, make_customer):
    customer = make_customer(first_name="Solo", email="solo@example.com")

    result = runner.invoke(args=["customers", "merge-candidates", str(customer.id)])

    assert result.exit_code == 0, result.output
    assert f"No merge candidates for customer {customer.id}." in result.output


def test_merge_command(runner, make_customer):
    primary = make_customer(first_name="Jane", email="jane@example.com")
    duplicate = make_customer(first_name="Janet", email="jane@example.com")
    primary_id, duplicate_id = primary.id, duplicate.id

    result = runner.invoke(
        args=["customers", "merge", str(primary_id), str(duplicate_id), "--yes", "--performed-by", "ops"]
    )

    assert result.exit_code == 0, result.output
    assert f"Merged 1 customer(s) into {primary_id}" in result.output
    assert db.session.get(Customer, duplicate_id) is None


def test_merge_command_requires_confirmation(runner, make_customer):
    primary = make_customer(first_name="Jane")
    duplicate = make_customer(first_name="Janet")

    result = runner.invoke(args=["customers", "merge", str(primary.id), str(duplicate.id)], input="n\n")

    assert result.exit_code == 1
    assert Customer.query.count() == 2


def test_merge_command_rejects_self_merge(runner, make_customer):
    customer = make_customer(first_name="Jane")

    result = runner.invoke(args=["customers", "merge", str(customer.id), str(customer.id), "--yes"])

    assert result.exit_code != 0
    assert "cannot be merged into itself" in result.output


def test_report_ambiguous_command(runner, make_customer):
    first = make_customer(first_name="A", identities=[("storefront", "sf-1", "dup@example.com", None)])
    second = make_customer(first_name="B", identities=[("accounting", "qb-1", "dup@example.com", None)])

    result = runner.invoke(args=["customers", "report-ambiguous", "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload == [{"signal": "email", "value": "dup@example.com", "customer_ids": [first.id, second.id]}]


def test_report_ambiguous_command_clean(runner, make_customer):
    make_customer(first_name="Solo", email="solo@example.com")

    result = runner.invoke(args=["customers", "report-ambiguous"])

    assert result.exit_code == 0, result.output
    assert "No shared identity values found." in result.output


def test_rebuild_search_command(runner, make_customer):
    make_customer(first_name="Ada")
    make_customer(first_name="Grace")
    db.session.execute(CustomerSearchDocument.__table__.delete())
    db.session.commit()

    result = runner.invoke(args=["customers", "rebuild-search"])

    assert result.exit_code == 0, result.output
    assert "Indexed 2 customer(s)." in result.output
    assert CustomerSearchDocument.query.count() == 2


def test_cursor_show_and_reset(runner):
    SyncCursorStore().update_cursor("storefront_customer", {"page": 4}, 12)
    db.session.commit()

    shown = runner.invoke(args=["customers", "cursor", "show", "storefront_customer"])
    assert shown.exit_code == 0, shown.output
    assert '{"page": 4}' in shown.output
    assert "Items synced   : 12" in shown.output

    reset = runner.invoke(args=["customers", "cursor", "reset", "storefront_customer", "--yes"])
    assert reset.exit_code == 0, reset.output
    assert SyncCursorStore().get_cursor("storefront_customer") is None


def test_cursor_show_unknown_source(runner):
    result = runner.invoke(args=["customers", "cursor", "show", "nope"])

    assert result.exit_code == 1
    assert "No cursor stored for 'nope'." in result.output
