from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

import requests

from rincon.domain.models import CommitResult, Customer, Product, Sale, SaleItem, Totals
from rincon.domain.money import percentage

log = logging.getLogger("rincon.remote")

# domain field -> productos column
PRODUCT_COLUMNS = {
    "sku": "sku",
    "name": "nombre",
    "size": "tamano",
    "price": "precio",
    "cost": "costo",
    "stock": "stock",
    "active": "activo",
}


def _to_remote_datetime(value: str) -> str:
    return datetime.fromisoformat(value).astimezone().isoformat()


def _from_remote_datetime(value: str) -> str:
    dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat(sep=" ")


class RemoteRepository:
    """Sales store backed by a Supabase/PostgREST database.

    Tables: productos, clientes, pedidos, detalle_pedido, plus the
    decrement_stock(prod_id, qty) RPC, as created by sql/supabase_schema.sql
    (which also adds aplica_pack and ajuste_stock_pendiente to pedidos).
    PostgREST has no multi-request transaction, so create_sale writes header,
    details and stock in three steps and reports any stock decrement that did
    not go through.
    """

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    def init_db(self) -> None:
        # schema is owned by the remote project
        return None

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        json: object | None = None,
        prefer: str | None = None,
    ):
        headers = {"Prefer": prefer} if prefer else None
        r = self.session.request(
            method,
            f"{self.base_url}/rest/v1/{path}",
            params=params,
            json=json,
            headers=headers,
            timeout=self.timeout,
        )
        r.raise_for_status()
        if not r.content:
            return None
        return r.json()

    # ---------- Products ----------
    @staticmethod
    def _product_from_row(r: dict) -> Product:
        return Product(
            id=str(r["id"]),
            sku=str(r.get("sku") or ""),
            name=str(r["nombre"]),
            size=str(r["tamano"]),
            price=float(r["precio"]),
            cost=float(r["costo"]),
            stock=int(r["stock"]),
            active=1 if r.get("activo", True) else 0,
        )

    @staticmethod
    def _product_to_row(**fields) -> dict:
        row = {PRODUCT_COLUMNS[k]: v for k, v in fields.items()}
        if "activo" in row:
            row["activo"] = bool(row["activo"])
        return row

    def list_products(self, include_inactive: bool = False) -> list[Product]:
        params = {"select": "id,sku,nombre,tamano,precio,costo,stock,activo", "order": "nombre.asc,tamano.asc"}
        if not include_inactive:
            params["activo"] = "is.true"
        rows = self._request("GET", "productos", params=params) or []
        return [self._product_from_row(r) for r in rows]

    def get_product_by_id(self, product_id: str) -> Optional[Product]:
        rows = self._request(
            "GET",
            "productos",
            params={"select": "id,sku,nombre,tamano,precio,costo,stock,activo", "id": f"eq.{product_id}"},
        ) or []
        return self._product_from_row(rows[0]) if rows else None

    def add_product(self, sku: str, name: str, size: str, price: float, cost: float, stock: int, active: int = 1) -> str:
        row = self._product_to_row(sku=sku, name=name, size=size, price=price, cost=cost, stock=int(stock), active=active)
        created = self._request("POST", "productos", json=row, prefer="return=representation")
        return str(created[0]["id"])

    def update_product(self, product_id: str, **fields) -> bool:
        unknown = set(fields) - set(PRODUCT_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown product fields: {sorted(unknown)}")
        if not fields:
            return self.get_product_by_id(product_id) is not None
        rows = self._request(
            "PATCH",
            "productos",
            params={"id": f"eq.{product_id}"},
            json=self._product_to_row(**fields),
            prefer="return=representation",
        )
        return bool(rows)

    def delete_product(self, product_id: str) -> bool:
        sold = self._request(
            "GET",
            "detalle_pedido",
            params={"select": "pedido_id", "producto_id": f"eq.{product_id}", "limit": "1"},
        )
        if sold:
            return self.update_product(product_id, active=0)
        rows = self._request("DELETE", "productos", params={"id": f"eq.{product_id}"}, prefer="return=representation")
        return bool(rows)

    def decrement_stock(self, product_id: str, qty: int) -> None:
        # not idempotent: never retry after an ambiguous failure
        self._request("POST", "rpc/decrement_stock", json={"prod_id": product_id, "qty": int(qty)})

    # ---------- Customers ----------
    @staticmethod
    def _customer_from_row(r: dict) -> Customer:
        return Customer(id=str(r["id"]), name=str(r["nombre"]), type=str(r["tipo"]), contact=r.get("contacto") or None)

    def list_customers(self) -> list[Customer]:
        rows = self._request("GET", "clientes", params={"select": "id,nombre,tipo,contacto", "order": "nombre.asc"}) or []
        return [self._customer_from_row(r) for r in rows]

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        rows = self._request(
            "GET", "clientes", params={"select": "id,nombre,tipo,contacto", "id": f"eq.{customer_id}"}
        ) or []
        return self._customer_from_row(rows[0]) if rows else None

    def add_customer(self, name: str, type_: str, contact: Optional[str]) -> str:
        created = self._request(
            "POST",
            "clientes",
            json={"nombre": name, "tipo": type_, "contacto": contact},
            prefer="return=representation",
        )
        return str(created[0]["id"])

    def delete_customer(self, customer_id: str) -> bool:
        rows = self._request("DELETE", "clientes", params={"id": f"eq.{customer_id}"}, prefer="return=representation")
        return bool(rows)

    # ---------- Sales ----------
    @staticmethod
    def _sale_to_row(sale: Sale) -> dict:
        t = sale.totals
        return {
            "id": sale.id,
            "fecha": _to_remote_datetime(sale.datetime),
            "cliente_id": sale.customer_id,
            "cliente_nombre": sale.customer_name,
            "canal": sale.channel,
            "afiliado_box": bool(sale.affiliate),
            "desc_pct": float(sale.manual_discount_pct),
            "aplica_pack": bool(sale.bundle_applied),
            "bruto": int(t.gross),
            "descuento": int(t.discount),
            "neto": int(t.net),
            "costo": int(t.cost),
            "margen": int(t.margin),
            "notas": sale.notes,
            "ajuste_stock_pendiente": bool(sale.stock_pending),
        }

    @staticmethod
    def _detail_rows(sale_id: str, items: Iterable[SaleItem]) -> list[dict]:
        return [
            {
                "pedido_id": sale_id,
                "producto_id": it.product_id,
                "producto_nombre": it.name,
                "tamano": it.size,
                "precio_unit": float(it.unit_price),
                "costo_unit": float(it.unit_cost),
                "cantidad": int(it.qty),
                "subtotal": it.line_total,
            }
            for it in items
        ]

    def _insert_sale(self, sale: Sale) -> str:
        row = self._sale_to_row(sale)
        # pedidos ids are generated remotely
        row.pop("id")
        header = self._request("POST", "pedidos", json=row, prefer="return=representation")
        sale_id = str(header[0]["id"])
        try:
            self._request("POST", "detalle_pedido", json=self._detail_rows(sale_id, sale.items))
        except requests.RequestException:
            log.error("sale_detail_failed sale_id=%s removing_header=1", sale_id)
            try:
                self._request("DELETE", "pedidos", params={"id": f"eq.{sale_id}"})
            except requests.RequestException as cleanup_exc:
                log.error("sale_header_cleanup_failed sale_id=%s error=%s", sale_id, cleanup_exc)
            raise
        return sale_id

    def create_sale(self, sale: Sale) -> CommitResult:
        sale_id = self._insert_sale(sale)

        failed: list[str] = []
        for it in sale.items:
            try:
                self.decrement_stock(it.product_id, it.qty)
            except requests.RequestException as exc:
                log.error(
                    "stock_decrement_failed sale_id=%s product_id=%s qty=%s error=%s",
                    sale_id,
                    it.product_id,
                    it.qty,
                    exc,
                )
                failed.append(it.product_id)

        return CommitResult(
            sale_id=sale_id,
            stock_adjusted=not failed,
            failed_product_ids=tuple(dict.fromkeys(failed)),
        )

    def _load_sales(self, params: dict) -> list[Sale]:
        headers = self._request(
            "GET",
            "pedidos",
            params={
                "select": "id,fecha,cliente_id,cliente_nombre,canal,afiliado_box,desc_pct,aplica_pack,"
                "bruto,descuento,neto,costo,margen,notas,ajuste_stock_pendiente",
                "order": "fecha.desc",
                **params,
            },
        ) or []
        if not headers:
            return []

        ids = ",".join(str(h["id"]) for h in headers)
        details = self._request(
            "GET",
            "detalle_pedido",
            params={
                "select": "pedido_id,producto_id,producto_nombre,tamano,precio_unit,costo_unit,cantidad",
                "pedido_id": f"in.({ids})",
            },
        ) or []
        items_by_sale: dict[str, list[SaleItem]] = {}
        for d in details:
            items_by_sale.setdefault(str(d["pedido_id"]), []).append(
                SaleItem(
                    product_id=str(d["producto_id"]),
                    name=str(d["producto_nombre"]),
                    size=str(d["tamano"]),
                    qty=int(d["cantidad"]),
                    unit_price=float(d["precio_unit"]),
                    unit_cost=float(d["costo_unit"]),
                )
            )

        return [
            Sale(
                id=str(h["id"]),
                datetime=_from_remote_datetime(h["fecha"]),
                customer_id=h.get("cliente_id") or None,
                customer_name=h.get("cliente_nombre") or None,
                channel=str(h["canal"]),
                affiliate=bool(h.get("afiliado_box")),
                manual_discount_pct=float(h.get("desc_pct") or 0),
                bundle_applied=bool(h.get("aplica_pack", True)),
                totals=Totals(
                    gross=int(h["bruto"]),
                    discount=int(h["descuento"]),
                    net=int(h["neto"]),
                    cost=int(h["costo"]),
                    margin=int(h["margen"]),
                    margin_pct=percentage(int(h["margen"]), int(h["neto"])),
                ),
                notes=h.get("notas") or None,
                stock_pending=bool(h.get("ajuste_stock_pendiente")),
                items=tuple(items_by_sale.get(str(h["id"]), [])),
            )
            for h in headers
        ]

    def list_sales(self) -> list[Sale]:
        return self._load_sales({})

    def get_sale(self, sale_id: str) -> Optional[Sale]:
        rows = self._load_sales({"id": f"eq.{sale_id}"})
        return rows[0] if rows else None

    def delete_sale(self, sale_id: str) -> bool:
        # stock is intentionally left as is
        self._request("DELETE", "detalle_pedido", params={"pedido_id": f"eq.{sale_id}"})
        rows = self._request("DELETE", "pedidos", params={"id": f"eq.{sale_id}"}, prefer="return=representation")
        return bool(rows)

    def flag_stock_reconciliation(self, sale_id: str) -> bool:
        rows = self._request(
            "PATCH",
            "pedidos",
            params={"id": f"eq.{sale_id}"},
            json={"ajuste_stock_pendiente": True},
            prefer="return=representation",
        )
        return bool(rows)

    def replace_all(self, products: Iterable[Product], customers: Iterable[Customer], sales: Iterable[Sale]) -> None:
        """Wipe and reload the remote tables. Not atomic; a failure midway raises."""
        sales = list(sales)
        # build every payload before the first DELETE
        product_rows = [
            {"id": p.id, **self._product_to_row(sku=p.sku, name=p.name, size=p.size, price=p.price, cost=p.cost, stock=p.stock, active=p.active)}
            for p in products
        ]
        customer_rows = [{"id": c.id, "nombre": c.name, "tipo": c.type, "contacto": c.contact} for c in customers]
        sale_rows = [self._sale_to_row(s) for s in sales]
        detail_rows = [row for s in sales for row in self._detail_rows(s.id, s.items)]

        self._request("DELETE", "detalle_pedido", params={"pedido_id": "not.is.null"})
        self._request("DELETE", "pedidos", params={"id": "not.is.null"})
        self._request("DELETE", "clientes", params={"id": "not.is.null"})
        self._request("DELETE", "productos", params={"id": "not.is.null"})

        for table, rows in (
            ("productos", product_rows),
            ("clientes", customer_rows),
            ("pedidos", sale_rows),
            ("detalle_pedido", detail_rows),
        ):
            if rows:
                self._request("POST", table, json=rows)
