from __future__ import annotations

import logging
import math

from rincon.domain.errors import ValidationError, NotFoundError
from rincon.domain.models import Product

log = logging.getLogger(__name__)


def _non_negative(value) -> bool:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number) and number >= 0


class InventoryService:
    def __init__(self, repo):
        self.repo = repo

    def list_products(self, include_inactive: bool = False) -> list[Product]:
        return self.repo.list_products(include_inactive=include_inactive)

    def get_product(self, product_id: str) -> Product:
        p = self.repo.get_product_by_id(product_id)
        if not p:
            raise NotFoundError("Product not found.")
        return p

    def add_product(
        self,
        name: str,
        size: str,
        price: float,
        cost: float,
        stock: int,
        sku: str = "",
        active: bool = True,
    ) -> str:
        name = (name or "").strip()
        size = (size or "").strip()
        sku = (sku or "").strip()
        if not name or not size:
            raise ValidationError("Name and size are required.")
        self._validate_numbers(price=price, cost=cost, stock=stock)
        pid = self.repo.add_product(sku, name, size, float(price), float(cost), int(stock), int(bool(active)))
        log.info("product_created product_id=%s name=%s size=%s", pid, name, size)
        return pid

    def update_product(self, product_id: str, **fields) -> None:
        for key in ("name", "size"):
            if key in fields:
                fields[key] = (fields[key] or "").strip()
                if not fields[key]:
                    raise ValidationError("Name and size are required.")
        if "sku" in fields:
            fields["sku"] = (fields["sku"] or "").strip()
        self._validate_numbers(**{k: fields[k] for k in ("price", "cost", "stock") if k in fields})
        if "active" in fields:
            fields["active"] = int(bool(fields["active"]))

        updated = self.repo.update_product(str(product_id), **fields)
        if not updated:
            raise NotFoundError("Product not found.")

    def set_active(self, product_id: str, active: bool) -> None:
        self.update_product(product_id, active=active)

    def delete_product(self, product_id: str) -> None:
        """Products with sales history are deactivated, not removed."""
        removed = self.repo.delete_product(str(product_id))
        if not removed:
            raise NotFoundError("Product not found.")
        log.info("product_deleted product_id=%s", product_id)

    @staticmethod
    def _validate_numbers(**values) -> None:
        if "price" in values and not _non_negative(values["price"]):
            raise ValidationError("Price must be >= 0.")
        if "cost" in values and not _non_negative(values["cost"]):
            raise ValidationError("Cost must be >= 0.")
        if "stock" in values:
            stock = values["stock"]
            if not _non_negative(stock) or int(stock) != stock:
                raise ValidationError("Stock must be a whole number >= 0.")
