from __future__ import annotations

from typing import Iterable, Optional, Protocol

from rincon.domain.models import CommitResult, Customer, Product, Sale


class ProductRepository(Protocol):
    def list_products(self, include_inactive: bool = False) -> list[Product]: ...
    def get_product_by_id(self, product_id: str) -> Optional[Product]: ...
    def add_product(self, sku: str, name: str, size: str, price: float, cost: float, stock: int, active: int = 1) -> str: ...
    def update_product(self, product_id: str, **fields) -> bool: ...
    def delete_product(self, product_id: str) -> bool: ...
    def decrement_stock(self, product_id: str, qty: int) -> None: ...


class CustomerRepository(Protocol):
    def list_customers(self) -> list[Customer]: ...
    def get_customer(self, customer_id: str) -> Optional[Customer]: ...
    def add_customer(self, name: str, type_: str, contact: Optional[str]) -> str: ...
    def delete_customer(self, customer_id: str) -> bool: ...


class SalesStore(ProductRepository, CustomerRepository, Protocol):
    """Storage capability consumed by the services.

    create_sale writes the header with its frozen totals, the line items and
    the stock decrements. Implementations that can't do that atomically must
    report failed decrements in the returned CommitResult.
    """

    def init_db(self) -> None: ...
    def list_sales(self) -> list[Sale]: ...
    def get_sale(self, sale_id: str) -> Optional[Sale]: ...
    def create_sale(self, sale: Sale) -> CommitResult: ...
    def delete_sale(self, sale_id: str) -> bool: ...
    def flag_stock_reconciliation(self, sale_id: str) -> bool: ...
    def replace_all(self, products: Iterable[Product], customers: Iterable[Customer], sales: Iterable[Sale]) -> None: ...
