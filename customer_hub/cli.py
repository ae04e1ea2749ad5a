"""
Operator commands for customer identity maintenance (``flask customers ...``).
"""

from __future__ import annotations

import json

import click
from flask.cli import AppGroup

from customer_hub.identity import (
    CustomerSearchService,
    MergeService,
    rebuild_all_search_documents,
)
from customer_hub.models import db
from customer_hub.sync import SyncCursorStore

customers_cli = AppGroup("customers", help="Customer identity search, merge and sync maintenance.")


def _echo_json(payload: object) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


@customers_cli.command("search")
@click.argument("query")
@click.option("--limit", type=int, default=None, help="Maximum number of customers to return.")
@click.option("--json", "as_json", is_flag=True, help="Emit JSON instead of a table.")
def search_command(query: str, limit: int | None, as_json: bool):
    """Ranked search over unified customers."""
    response = CustomerSearchService().search(query, limit)
    if as_json:
        _echo_json(
            {
                "query": response.query,
                "search_type": response.search_type,
                "degraded": response.degraded,
                "results": [result.to_dict() for result in response.results],
            }
        )
        return

    if response.degraded:
        click.echo("Warning: ranked search unavailable, showing substring matches.", err=True)
    if not response.results:
        click.echo(f"No customers match '{response.query}'.")
        return
    for result in response.results:
        name = " ".join(part for part in (result.first_name, result.last_name) if part) or result.company or "-"
        score = f"{result.score:6.2f}" if result.score is not None else "     -"
        vip = " [VIP]" if result.is_vip else ""
        click.echo(f"{score}  #{result.customer_id:<6} {name}{vip}  {result.primary_email or ''}")


@customers_cli.command("merge-candidates")
@click.argument("customer_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Emit JSON instead of text.")
def merge_candidates_command(customer_id: int, as_json: bool):
    """List customers sharing an email or phone with CUSTOMER_ID."""
    candidates = MergeService().find_merge_candidates(customer_id)
    if as_json:
        _echo_json(
            [
                {
                    "customer_id": candidate.customer_id,
                    "first_name": candidate.first_name,
                    "last_name": candidate.last_name,
                    "primary_email": candidate.primary_email,
                    "primary_phone": candidate.primary_phone,
                    "matched_on": list(candidate.matched_on),
                }
                for candidate in candidates
            ]
        )
        return
    if not candidates:
        click.echo(f"No merge candidates for customer {customer_id}.")
        return
    for candidate in candidates:
        name = " ".join(part for part in (candidate.first_name, candidate.last_name) if part) or "-"
        click.echo(f"#{candidate.customer_id:<6} {name}  matched on: {', '.join(candidate.matched_on)}")


@customers_cli.command("merge")
@click.argument("primary_id", type=int)
@click.argument("merge_ids", type=int, nargs=-1, required=True)
@click.option("--performed-by", default=None, help="Operator name recorded in the merge log.")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
def merge_command(primary_id: int, merge_ids: tuple[int, ...], performed_by: str | None, yes: bool):
    """Merge MERGE_IDS into PRIMARY_ID and delete the merged customers."""
    if not yes:
        click.confirm(
            f"Merge customers {', '.join(str(value) for value in merge_ids)} into {primary_id}?",
            abort=True,
        )
    try:
        result = MergeService().merge_customers(primary_id, merge_ids, performed_by=performed_by)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    moved = ", ".join(f"{table}={count}" for table, count in sorted(result.repointed.items()) if count) or "none"
    click.echo(
        f"Merged {len(result.merged_customer_ids)} customer(s) into {result.primary_customer_id} "
        f"(merge log {result.merge_log_id}). Re-pointed rows: {moved}"
    )


@customers_cli.command("report-ambiguous")
@click.option("--limit", type=int, default=100, show_default=True, help="Maximum groups per signal.")
@click.option("--json", "as_json", is_flag=True, help="Emit JSON instead of text.")
def report_ambiguous_command(limit: int, as_json: bool):
    """Report emails, phones and address hashes shared by several customers."""
    groups = MergeService().find_ambiguous_groups(limit=limit)
    if as_json:
        _echo_json(
            [
                {"signal": group.signal, "value": group.value, "customer_ids": list(group.customer_ids)}
                for group in groups
            ]
        )
        return
    if not groups:
        click.echo("No shared identity values found.")
        return
    click.echo(f"{len(groups)} shared identity value(s) need review:")
    for group in groups:
        owners = ", ".join(str(value) for value in group.customer_ids)
        click.echo(f"  {group.signal:<12} {group.value}  -> customers {owners}")


@customers_cli.command("rebuild-search")
def rebuild_search_command():
    """Rebuild the customer search read model from scratch."""
    count = rebuild_all_search_documents()
    click.echo(f"Indexed {count} customer(s).")


@customers_cli.group("cursor")
def cursor_group():
    """Inspect or reset sync cursors."""


@cursor_group.command("show")
@click.argument("source_type")
def cursor_show_command(source_type: str):
    """Show the stored cursor for SOURCE_TYPE."""
    state = SyncCursorStore().get_state(source_type)
    if state is None:
        raise click.ClickException(f"No cursor stored for '{source_type}'.")
    click.echo(f"Source         : {state.source_type}")
    click.echo(f"Cursor         : {json.dumps(state.cursor_value, default=str)}")
    click.echo(f"Items synced   : {state.items_synced}")
    click.echo(f"Last success   : {state.last_success_at or 'never'}")
    click.echo(f"Last error     : {state.last_error or '-'}")


@cursor_group.command("reset")
@click.argument("source_type")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
def cursor_reset_command(source_type: str, yes: bool):
    """Forget the stored position so the next run starts from the beginning."""
    if not yes:
        click.confirm(f"Reset the sync cursor for '{source_type}'?", abort=True)
    if not SyncCursorStore().reset_cursor(source_type):
        raise click.ClickException(f"No cursor stored for '{source_type}'.")
    db.session.commit()
    click.echo(f"Cursor for '{source_type}' reset.")


def init_customer_cli(app) -> None:
    app.cli.add_command(customers_cli)
