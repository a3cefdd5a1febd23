from __future__ import annotations

import functools
import logging

import click
import requests

from rincon.application.container import AppContainer, build_container
from rincon.config import get_app_paths, load_settings
from rincon.domain.errors import AppError
from rincon.domain.models import CHANNELS, CUSTOMER_TYPES
from rincon.logging_config import setup_logging


def _container(ctx: click.Context) -> AppContainer:
    root = ctx.find_root()
    if root.obj is None:
        paths = get_app_paths()
        setup_logging(paths.logs_dir, level=logging.INFO, console=root.meta.get("rincon.verbose", False))
        root.obj = build_container(paths.db_path, load_settings(), backup_dir=paths.backup_dir)
    return root.obj


def app_errors(f):
    """Turn domain and remote-store failures into a one-line CLI error."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except AppError as exc:
            raise click.ClickException(str(exc)) from exc
        except FileNotFoundError as exc:
            raise click.ClickException(str(exc)) from exc
        except requests.RequestException as exc:
            raise click.ClickException(f"Remote store error: {exc}") from exc

    return wrapper


def _parse_items(ctx, param, values):
    items = []
    for raw in values:
        parts = raw.split(":")
        if len(parts) not in (2, 3) or not parts[0]:
            raise click.BadParameter(f"{raw!r} is not PRODUCT_ID:QTY[:PRICE]")
        try:
            line = {"product_id": parts[0], "qty": int(parts[1])}
            if len(parts) == 3:
                line["unit_price"] = float(parts[2])
        except ValueError:
            raise click.BadParameter(f"{raw!r} is not PRODUCT_ID:QTY[:PRICE]") from None
        items.append(line)
    return items


@click.group()
@click.option("--verbose", is_flag=True, help="Also print warnings and errors to the terminal.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Rincón Fit sales ledger."""
    ctx.meta["rincon.verbose"] = verbose


# ---------- Sales ----------
@cli.command("sale")
@click.option("--item", "items", multiple=True, required=True, callback=_parse_items,
              metavar="PRODUCT_ID:QTY[:PRICE]", help="Cart line; repeat for more lines.")
@click.option("--channel", type=click.Choice(CHANNELS), default="IG", show_default=True)
@click.option("--customer-id", default=None)
@click.option("--customer-name", default=None, help="Walk-in customer name.")
@click.option("--affiliate", is_flag=True, help="Gym partner discount (Box channel only).")
@click.option("--discount", "manual_discount_pct", type=float, default=0.0, show_default=True,
              help="Manual discount percentage.")
@click.option("--no-bundle", is_flag=True, help="Do not apply the 1 kg + 425 g pack price.")
@click.option("--notes", default=None)
@click.pass_context
@app_errors
def sale_command(ctx, items, channel, customer_id, customer_name, affiliate, manual_discount_pct, no_bundle, notes):
    c = _container(ctx)
    result = c.sales.create_sale(
        items,
        channel=channel,
        customer_id=customer_id,
        customer_name=customer_name,
        affiliate=affiliate,
        manual_discount_pct=manual_discount_pct,
        apply_bundle=not no_bundle,
        notes=notes,
    )
    sale = c.sales.get_sale(result.sale_id)
    if sale is not None:
        t = sale.totals
        click.echo(f"Sale {result.sale_id} recorded: gross {t.gross}, discount {t.discount}, net {t.net}")
    else:
        click.echo(f"Sale {result.sale_id} recorded")

    if result.stock_adjusted:
        click.echo("Stock adjusted: yes")
        return
    c.sales.flag_stock_reconciliation(result.sale_id)
    click.echo(
        f"Stock adjusted: no (products: {', '.join(result.failed_product_ids)}). "
        "Sale flagged for stock reconciliation.",
        err=True,
    )


@cli.command("sales")
@click.pass_context
@app_errors
def sales_command(ctx: click.Context) -> None:
    rows = _container(ctx).sales.list_sales()
    if not rows:
        click.echo("No sales yet.")
        return
    for s in rows:
        pending = "  [stock pending]" if s.stock_pending else ""
        click.echo(f"{s.datetime}  {s.id}  {s.channel}  {s.customer_name or '-'}  net {s.totals.net}{pending}")


@cli.command("delete-sale")
@click.argument("sale_id")
@click.confirmation_option(prompt="Delete this sale? Stock is not given back.")
@click.pass_context
@app_errors
def delete_sale_command(ctx: click.Context, sale_id: str) -> None:
    _container(ctx).sales.delete_sale(sale_id)
    click.echo(f"Sale {sale_id} deleted")


@cli.command("flag-stock")
@click.argument("sale_id")
@click.pass_context
@app_errors
def flag_stock_command(ctx: click.Context, sale_id: str) -> None:
    _container(ctx).sales.flag_stock_reconciliation(sale_id)
    click.echo(f"Sale {sale_id} flagged for stock reconciliation")


# ---------- Catalog ----------
@cli.group("product")
def product_group() -> None:
    """Catalog management."""


@product_group.command("list")
@click.option("--all", "include_inactive", is_flag=True, help="Include inactive products.")
@click.pass_context
@app_errors
def product_list_command(ctx: click.Context, include_inactive: bool) -> None:
    for p in _container(ctx).inventory.list_products(include_inactive=include_inactive):
        state = "" if p.active else "  (inactive)"
        click.echo(f"{p.id}  {p.sku or '-'}  {p.name} {p.size}  price {p.price:.0f}  cost {p.cost:.0f}  stock {p.stock}{state}")


@product_group.command("add")
@click.argument("name")
@click.argument("size")
@click.option("--price", type=float, required=True)
@click.option("--cost", type=float, required=True)
@click.option("--stock", type=int, default=0, show_default=True)
@click.option("--sku", default="")
@click.pass_context
@app_errors
def product_add_command(ctx, name, size, price, cost, stock, sku):
    pid = _container(ctx).inventory.add_product(name, size, price, cost, stock, sku=sku)
    click.echo(f"Product {pid} added")


@product_group.command("update")
@click.argument("product_id")
@click.option("--name", default=None)
@click.option("--size", default=None)
@click.option("--sku", default=None)
@click.option("--price", type=float, default=None)
@click.option("--cost", type=float, default=None)
@click.option("--stock", type=int, default=None)
@click.pass_context
@app_errors
def product_update_command(ctx, product_id, **options):
    fields = {k: v for k, v in options.items() if v is not None}
    if not fields:
        raise click.UsageError("Nothing to update.")
    _container(ctx).inventory.update_product(product_id, **fields)
    click.echo(f"Product {product_id} updated")


@product_group.command("activate")
@click.argument("product_id")
@click.pass_context
@app_errors
def product_activate_command(ctx: click.Context, product_id: str) -> None:
    _container(ctx).inventory.set_active(product_id, True)
    click.echo(f"Product {product_id} activated")


@product_group.command("deactivate")
@click.argument("product_id")
@click.pass_context
@app_errors
def product_deactivate_command(ctx: click.Context, product_id: str) -> None:
    _container(ctx).inventory.set_active(product_id, False)
    click.echo(f"Product {product_id} deactivated")


@product_group.command("delete")
@click.argument("product_id")
@click.pass_context
@app_errors
def product_delete_command(ctx: click.Context, product_id: str) -> None:
    _container(ctx).inventory.delete_product(product_id)
    click.echo(f"Product {product_id} deleted (deactivated if it has sales)")


# ---------- Customers ----------
@cli.group("customer")
def customer_group() -> None:
    """Customer directory."""


@customer_group.command("list")
@click.pass_context
@app_errors
def customer_list_command(ctx: click.Context) -> None:
    for cu in _container(ctx).customers.list_customers():
        click.echo(f"{cu.id}  {cu.name}  {cu.type}  {cu.contact or '-'}")


@customer_group.command("add")
@click.argument("name")
@click.option("--type", "type_", type=click.Choice(CUSTOMER_TYPES), default="B2C", show_default=True)
@click.option("--contact", default=None)
@click.pass_context
@app_errors
def customer_add_command(ctx, name, type_, contact):
    cid = _container(ctx).customers.add_customer(name, type_, contact)
    click.echo(f"Customer {cid} added")


@customer_group.command("delete")
@click.argument("customer_id")
@click.pass_context
@app_errors
def customer_delete_command(ctx: click.Context, customer_id: str) -> None:
    _container(ctx).customers.delete_customer(customer_id)
    click.echo(f"Customer {customer_id} deleted")


# ---------- Reporting ----------
@cli.command("kpis")
@click.pass_context
@app_errors
def kpis_command(ctx: click.Context) -> None:
    k = _container(ctx).reporting.kpis()
    click.echo(f"Gross:          {k.gross}")
    click.echo(f"Net:            {k.net}")
    click.echo(f"Cost:           {k.cost}")
    click.echo(f"Margin:         {k.margin} ({k.margin_pct}%)")
    click.echo(f"Tickets:        {k.tickets}")
    click.echo(f"Average ticket: {k.average_ticket}")


@cli.command("top-products")
@click.option("--limit", default=5, show_default=True, type=int)
@click.pass_context
@app_errors
def top_products_command(ctx: click.Context, limit: int) -> None:
    rows = _container(ctx).reporting.top_products(limit)
    if not rows:
        click.echo("No sales yet.")
        return
    for r in rows:
        click.echo(f"{r.name} {r.size}: {r.qty} units, {r.revenue:.0f}")


@cli.command("channels")
@click.pass_context
@app_errors
def channels_command(ctx: click.Context) -> None:
    rows = _container(ctx).reporting.channel_breakdown()
    if not rows:
        click.echo("No sales yet.")
        return
    for channel, net in rows:
        click.echo(f"{channel}: {net}")


# ---------- Files ----------
@cli.command("export-csv")
@click.argument("path", type=click.Path(dir_okay=False))
@click.pass_context
@app_errors
def export_csv_command(ctx: click.Context, path: str) -> None:
    target = _container(ctx).exports.export_sales_csv(path)
    click.echo(f"Sales exported to {target}")


@cli.command("export-report")
@click.argument("path", type=click.Path(dir_okay=False))
@click.pass_context
@app_errors
def export_report_command(ctx: click.Context, path: str) -> None:
    _container(ctx).reporting.export_sales_report_excel(path)
    click.echo(f"Report exported to {path}")


@cli.command("backup")
@click.argument("path", type=click.Path(dir_okay=False), required=False)
@click.pass_context
@app_errors
def backup_command(ctx: click.Context, path: str | None) -> None:
    """Write a JSON snapshot to PATH, or a timestamped file in the backup folder."""
    backup = _container(ctx).backup
    target = backup.export_snapshot(path) if path else backup.create_backup()
    click.echo(f"Backup written to {target}")


@cli.command("restore")
@click.argument("path", type=click.Path(exists=True, dir_okay=False), required=False)
@click.confirmation_option(prompt="This replaces all products, customers and sales. Continue?")
@click.pass_context
@app_errors
def restore_command(ctx: click.Context, path: str | None) -> None:
    """Load a JSON snapshot from PATH, or the latest one in the backup folder."""
    backup = _container(ctx).backup
    if path:
        source, counts = path, backup.import_snapshot(path)
    else:
        source, counts = backup.restore_latest_backup()
    products, customers, sales = counts
    click.echo(f"Restored {products} products, {customers} customers, {sales} sales from {source}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
