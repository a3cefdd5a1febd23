from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

from rincon.domain.errors import InvalidBackupError
from rincon.domain.models import CHANNELS, Customer, Product, Sale, SaleItem, Totals

log = logging.getLogger(__name__)

COLLECTIONS = ("products", "customers", "sales")


def _product(d: dict) -> Product:
    return Product(
        id=str(d["id"]),
        sku=str(d.get("sku") or ""),
        name=str(d["name"]),
        size=str(d["size"]),
        price=float(d["price"]),
        cost=float(d["cost"]),
        stock=int(d["stock"]),
        active=1 if d.get("active", 1) else 0,
    )


def _customer(d: dict) -> Customer:
    return Customer(id=str(d["id"]), name=str(d["name"]), type=str(d["type"]), contact=d.get("contact") or None)


def _sale(d: dict) -> Sale:
    t = d["totals"]
    return Sale(
        id=str(d["id"]),
        datetime=datetime.fromisoformat(str(d["datetime"])).isoformat(sep=" "),
        channel=str(d["channel"]),
        items=tuple(
            SaleItem(
                product_id=str(it["product_id"]),
                name=str(it["name"]),
                size=str(it["size"]),
                qty=int(it["qty"]),
                unit_price=float(it["unit_price"]),
                unit_cost=float(it["unit_cost"]),
            )
            for it in d["items"]
        ),
        totals=Totals(
            gross=int(t["gross"]),
            discount=int(t["discount"]),
            net=int(t["net"]),
            cost=int(t["cost"]),
            margin=int(t["margin"]),
            margin_pct=float(t["margin_pct"]),
        ),
        customer_id=d.get("customer_id") or None,
        customer_name=d.get("customer_name") or None,
        affiliate=bool(d.get("affiliate", False)),
        manual_discount_pct=float(d.get("manual_discount_pct", 0)),
        bundle_applied=bool(d.get("bundle_applied", False)),
        notes=d.get("notes") or None,
        stock_pending=bool(d.get("stock_pending", False)),
    )


def _amount(value: float, what: str) -> None:
    if not math.isfinite(value) or value < 0:
        raise InvalidBackupError(f"Invalid backup: {what} must be a number >= 0.")


def _unique_ids(records: list, what: str) -> None:
    seen: set[str] = set()
    for r in records:
        if not r.id or r.id in seen:
            raise InvalidBackupError(f"Invalid backup: missing or duplicate {what} id {r.id!r}.")
        seen.add(r.id)


def check_snapshot(products: list[Product], customers: list[Customer], sales: list[Sale]) -> None:
    """Reject anything a store would refuse halfway through replace_all."""
    _unique_ids(products, "product")
    _unique_ids(customers, "customer")
    _unique_ids(sales, "sale")

    for p in products:
        if not p.name or not p.size:
            raise InvalidBackupError(f"Invalid backup: product {p.id} needs a name and size.")
        _amount(p.price, f"price of product {p.id}")
        _amount(p.cost, f"cost of product {p.id}")
        _amount(p.stock, f"stock of product {p.id}")

    for c in customers:
        if not c.name:
            raise InvalidBackupError(f"Invalid backup: customer {c.id} needs a name.")

    for s in sales:
        if s.channel not in CHANNELS:
            raise InvalidBackupError(f"Invalid backup: sale {s.id} has unknown channel {s.channel!r}.")
        if not 0 <= s.manual_discount_pct <= 100:
            raise InvalidBackupError(f"Invalid backup: sale {s.id} manual discount must be within 0-100.")
        for it in s.items:
            if it.qty < 1:
                raise InvalidBackupError(f"Invalid backup: sale {s.id} has a line with qty < 1.")
            _amount(it.unit_price, f"unit price in sale {s.id}")
            _amount(it.unit_cost, f"unit cost in sale {s.id}")
        for field in ("gross", "discount", "net", "cost", "margin", "margin_pct"):
            _amount(getattr(s.totals, field), f"{field} of sale {s.id}")


class BackupService:
    """Full-state JSON snapshots (products + customers + sales)."""

    def __init__(self, repo, backup_dir: Path | str):
        self.repo = repo
        self.backup_dir = Path(backup_dir)

    def snapshot(self) -> dict:
        return {
            "products": [asdict(p) for p in self.repo.list_products(include_inactive=True)],
            "customers": [asdict(c) for c in self.repo.list_customers()],
            "sales": [asdict(s) for s in self.repo.list_sales()],
        }

    def export_snapshot(self, path: Path | str) -> Path:
        target = Path(path)
        target.write_text(json.dumps(self.snapshot(), ensure_ascii=False, indent=2), encoding="utf-8")
        log.info("snapshot_exported path=%s", target)
        return target

    def create_backup(self) -> Path:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        target = self.export_snapshot(self.backup_dir / f"sales_backup_{ts}.json")
        self._enforce_retention(max_backups=30)
        return target

    def load_snapshot(self, data: object) -> tuple[int, int, int]:
        """Validate the whole document first; write only if every record is valid."""
        if not isinstance(data, dict) or any(not isinstance(data.get(k), list) for k in COLLECTIONS):
            raise InvalidBackupError("Invalid backup: products, customers and sales are required.")
        try:
            products = [_product(d) for d in data["products"]]
            customers = [_customer(d) for d in data["customers"]]
            sales = [_sale(d) for d in data["sales"]]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise InvalidBackupError(f"Invalid backup record: {exc}") from exc
        check_snapshot(products, customers, sales)

        self.repo.replace_all(products, customers, sales)
        log.warning(
            "snapshot_imported products=%s customers=%s sales=%s",
            len(products),
            len(customers),
            len(sales),
        )
        return len(products), len(customers), len(sales)

    def import_snapshot(self, path: Path | str) -> tuple[int, int, int]:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise InvalidBackupError(f"Could not read backup: {exc}") from exc
        return self.load_snapshot(data)

    def restore_latest_backup(self) -> tuple[Path, tuple[int, int, int]]:
        files = sorted(self.backup_dir.glob("sales_backup_*.json")) if self.backup_dir.exists() else []
        if not files:
            raise FileNotFoundError("No backups available to restore")
        latest = files[-1]
        return latest, self.import_snapshot(latest)

    def _enforce_retention(self, max_backups: int) -> None:
        files = sorted(self.backup_dir.glob("sales_backup_*.json"))
        if len(files) <= max_backups:
            return
        for old in files[: len(files) - max_backups]:
            old.unlink(missing_ok=True)
