from __future__ import annotations
from dataclasses import dataclass
from typing import Optional


CHANNELS = ("IG", "WhatsApp", "Box", "Cafetería", "Feria", "Otro")
AFFILIATE_CHANNEL = "Box"
CUSTOMER_TYPES = ("B2C", "Cafetería/Box")


@dataclass(frozen=True)
class Product:
    id: str
    sku: str
    name: str
    size: str
    price: float
    cost: float
    stock: int
    active: int = 1


@dataclass(frozen=True)
class Customer:
    id: str
    name: str
    type: str
    contact: Optional[str] = None


@dataclass(frozen=True)
class SaleItem:
    product_id: str
    name: str
    size: str
    qty: int
    unit_price: float
    unit_cost: float

    @property
    def line_total(self) -> float:
        return self.unit_price * self.qty


@dataclass(frozen=True)
class Totals:
    gross: int
    discount: int
    net: int
    cost: int
    margin: int
    margin_pct: float


@dataclass(frozen=True)
class Sale:
    id: str
    datetime: str
    channel: str
    items: tuple[SaleItem, ...]
    totals: Totals
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    affiliate: bool = False
    manual_discount_pct: float = 0.0
    bundle_applied: bool = False
    notes: Optional[str] = None
    stock_pending: bool = False


@dataclass(frozen=True)
class CommitResult:
    sale_id: str
    stock_adjusted: bool
    failed_product_ids: tuple[str, ...] = ()
