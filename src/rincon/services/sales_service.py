from __future__ import annotations

from typing import Callable, Iterable, Optional

from collections import Counter
import logging
import math
from rincon.domain.errors import (
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from rincon.domain.models import AFFILIATE_CHANNEL, CHANNELS, CommitResult, Sale, SaleItem, Totals
from rincon.domain.money import clamp
from rincon.domain.pricing import DEFAULT_POLICY, PricingPolicy, calculate_totals
from rincon.repositories.contracts import SalesStore
from rincon.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork

log = logging.getLogger("rincon.sales")


class SalesService:
    def __init__(
        self,
        repo: SalesStore,
        policy: PricingPolicy = DEFAULT_POLICY,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.policy = policy
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))

    def quote(
        self,
        items: Iterable[SaleItem],
        manual_discount_pct: float = 0,
        apply_bundle: bool = True,
        affiliate: bool = False,
    ) -> Totals:
        return calculate_totals(items, manual_discount_pct, apply_bundle, affiliate, self.policy)

    def snapshot_items(self, items: Iterable[dict]) -> list[SaleItem]:
        """
        items: [{product_id, qty, unit_price?}]

        Freezes name, size and cost from the catalog. unit_price defaults to
        the catalog price. Stock is checked per product over all lines, using
        the stock as it is right now.
        """
        qty_by_product: Counter[str] = Counter()
        lines: list[SaleItem] = []
        for it in items:
            qty = int(it["qty"])
            if qty <= 0:
                raise ValidationError("Qty must be >= 1.")

            product_id = str(it["product_id"])
            prod = self.repo.get_product_by_id(product_id)
            if not prod or not prod.active:
                raise NotFoundError("Product not found.")

            unit_price = float(it["unit_price"]) if it.get("unit_price") is not None else float(prod.price)
            if not math.isfinite(unit_price) or unit_price < 0:
                raise ValidationError("Unit price must be >= 0.")

            qty_by_product[product_id] += qty
            if qty_by_product[product_id] > int(prod.stock):
                raise InsufficientStockError(
                    f"Not enough stock for {prod.name} {prod.size}. Available: {prod.stock}"
                )

            lines.append(
                SaleItem(
                    product_id=prod.id,
                    name=prod.name,
                    size=prod.size,
                    qty=qty,
                    unit_price=unit_price,
                    unit_cost=float(prod.cost),
                )
            )
        return lines

    def create_sale(
        self,
        items: Iterable[dict],
        channel: str = "IG",
        customer_id: Optional[str] = None,
        customer_name: Optional[str] = None,
        affiliate: bool = False,
        manual_discount_pct: float = 0,
        apply_bundle: bool = True,
        notes: Optional[str] = None,
    ) -> CommitResult:
        items = list(items)
        if not items:
            raise ValidationError("Cart is empty.")
        if channel not in CHANNELS:
            raise ValidationError(f"Unknown sales channel: {channel}")

        if customer_id:
            customer = self.repo.get_customer(customer_id)
            if not customer:
                raise NotFoundError("Customer not found.")
            customer_name = customer.name
        else:
            customer_name = (customer_name or "").strip() or None

        lines = self.snapshot_items(items)

        # the affiliate discount belongs to the gym partner channel only
        affiliate = bool(affiliate) and channel == AFFILIATE_CHANNEL
        pct = clamp(float(manual_discount_pct), 0.0, 100.0)
        totals = self.quote(lines, pct, apply_bundle, affiliate)

        candidate = Sale(
            id="",
            datetime="",
            channel=channel,
            items=tuple(lines),
            totals=totals,
            customer_id=customer_id or None,
            customer_name=customer_name,
            affiliate=affiliate,
            manual_discount_pct=pct,
            bundle_applied=bool(apply_bundle),
            notes=(notes or "").strip() or None,
        )

        with self.uow_factory() as uow:
            result = uow.commit_sale(candidate)

        log.info(
            "sale_created sale_id=%s items=%s net=%s channel=%s",
            result.sale_id,
            len(lines),
            totals.net,
            channel,
        )
        if not result.stock_adjusted:
            log.error(
                "sale_stock_not_adjusted sale_id=%s products=%s",
                result.sale_id,
                ",".join(result.failed_product_ids),
            )
        return result

    def flag_stock_reconciliation(self, sale_id: str) -> None:
        if not self.repo.flag_stock_reconciliation(str(sale_id)):
            raise NotFoundError("Sale not found.")
        log.warning("sale_flagged_for_stock_reconciliation sale_id=%s", sale_id)

    def delete_sale(self, sale_id: str) -> None:
        """Remove a sale and its lines. Stock taken by the sale is not given back."""
        if not self.repo.delete_sale(str(sale_id)):
            raise NotFoundError("Sale not found.")
        log.info("sale_deleted sale_id=%s", sale_id)

    def list_sales(self) -> list[Sale]:
        return self.repo.list_sales()

    def get_sale(self, sale_id: str) -> Optional[Sale]:
        return self.repo.get_sale(str(sale_id))
