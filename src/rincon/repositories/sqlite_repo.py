from __future__ import annotations

import sqlite3
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from rincon.domain.errors import InsufficientStockError, NotFoundError
from rincon.domain.models import CommitResult, Customer, Product, Sale, SaleItem, Totals


PRODUCT_FIELDS = ("sku", "name", "size", "price", "cost", "stock", "active")


class SqliteRepository:
    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_stock_reconciliation),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS products (
            id TEXT PRIMARY KEY,
            sku TEXT NOT NULL DEFAULT '',
            name TEXT NOT NULL,
            size TEXT NOT NULL,
            price REAL NOT NULL CHECK(price >= 0),
            cost REAL NOT NULL CHECK(cost >= 0),
            stock INTEGER NOT NULL DEFAULT 0 CHECK(stock >= 0),
            active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1))
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS customers (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            type TEXT NOT NULL,
            contact TEXT
        )
        """
        )

        # customer_id and product_id are weak references: deleting a customer
        # or product never touches historical sales.
        cur.execute("""
        CREATE TABLE IF NOT EXISTS sales (
            id TEXT PRIMARY KEY,
            datetime TEXT NOT NULL,
            customer_id TEXT,
            customer_name TEXT,
            channel TEXT NOT NULL,
            affiliate INTEGER NOT NULL DEFAULT 0,
            manual_discount_pct REAL NOT NULL DEFAULT 0,
            bundle_applied INTEGER NOT NULL DEFAULT 0,
            gross INTEGER NOT NULL,
            discount INTEGER NOT NULL,
            net INTEGER NOT NULL CHECK(net >= 0),
            cost INTEGER NOT NULL,
            margin INTEGER NOT NULL CHECK(margin >= 0),
            margin_pct REAL NOT NULL,
            notes TEXT
        )
        """)

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS sale_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            sale_id TEXT NOT NULL,
            position INTEGER NOT NULL,
            product_id TEXT NOT NULL,
            name TEXT NOT NULL,
            size TEXT NOT NULL,
            qty INTEGER NOT NULL CHECK(qty > 0),
            unit_price REAL NOT NULL CHECK(unit_price >= 0),
            unit_cost REAL NOT NULL CHECK(unit_cost >= 0),
            FOREIGN KEY(sale_id) REFERENCES sales(id) ON DELETE CASCADE
        )
        """
        )

    def _migration_v2_stock_reconciliation(self, cur: sqlite3.Cursor) -> None:
        self._add_column_if_missing(cur, "sales", "stock_pending", "INTEGER NOT NULL DEFAULT 0")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sales_datetime ON sales(datetime)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sale_items_product ON sale_items(product_id)")

    def _add_column_if_missing(self, cur: sqlite3.Cursor, table: str, column: str, definition: str) -> None:
        cur.execute(f"PRAGMA table_info({table})")
        cols = {str(r[1]) for r in cur.fetchall()}
        if column in cols:
            return
        cur.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")

    # ---------- Products ----------
    @staticmethod
    def _product_from_row(r) -> Product:
        return Product(
            id=str(r[0]),
            sku=str(r[1]),
            name=str(r[2]),
            size=str(r[3]),
            price=float(r[4]),
            cost=float(r[5]),
            stock=int(r[6]),
            active=int(r[7]),
        )

    def add_product(self, sku: str, name: str, size: str, price: float, cost: float, stock: int, active: int = 1) -> str:
        pid = uuid.uuid4().hex
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO products (id, sku, name, size, price, cost, stock, active)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (pid, sku, name, size, float(price), float(cost), int(stock), int(active)),
        )
        conn.commit()
        conn.close()
        return pid

    def update_product(self, product_id: str, **fields) -> bool:
        unknown = set(fields) - set(PRODUCT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown product fields: {sorted(unknown)}")
        if not fields:
            return self.get_product_by_id(product_id) is not None

        columns = [c for c in PRODUCT_FIELDS if c in fields]
        assignments = ", ".join(f"{c}=?" for c in columns)
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"UPDATE products SET {assignments} WHERE id=?",
            (*[fields[c] for c in columns], str(product_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def list_products(self, include_inactive: bool = False) -> list[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, sku, name, size, price, cost, stock, active
            FROM products
            WHERE active = 1 OR ?
            ORDER BY name, size
        """,
            (1 if include_inactive else 0,),
        )
        rows = cur.fetchall()
        conn.close()
        return [self._product_from_row(r) for r in rows]

    def get_product_by_id(self, product_id: str) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, sku, name, size, price, cost, stock, active
            FROM products
            WHERE id=?
        """,
            (str(product_id),),
        )
        r = cur.fetchone()
        conn.close()
        if not r:
            return None
        return self._product_from_row(r)

    def delete_product(self, product_id: str) -> bool:
        """Hard delete a never-sold product; deactivate one that has sales history."""
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT COUNT(*) FROM sale_items WHERE product_id=?", (str(product_id),))
        referenced = int(cur.fetchone()[0]) > 0
        if referenced:
            cur.execute("UPDATE products SET active=0 WHERE id=?", (str(product_id),))
        else:
            cur.execute("DELETE FROM products WHERE id=?", (str(product_id),))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def _decrement_stock(self, cur: sqlite3.Cursor, product_id: str, qty: int) -> None:
        cur.execute(
            "UPDATE products SET stock = stock - ? WHERE id = ? AND stock >= ?",
            (int(qty), str(product_id), int(qty)),
        )
        if cur.rowcount > 0:
            return
        cur.execute("SELECT name, size, stock FROM products WHERE id=?", (str(product_id),))
        row = cur.fetchone()
        if not row:
            raise NotFoundError(f"Product not found: {product_id}")
        raise InsufficientStockError(f"Not enough stock for {row[0]} {row[1]}. Available: {row[2]}")

    def decrement_stock(self, product_id: str, qty: int) -> None:
        conn = self._conn()
        cur = conn.cursor()
        try:
            self._decrement_stock(cur, product_id, qty)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ---------- Customers ----------
    def list_customers(self) -> list[Customer]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, name, type, contact FROM customers ORDER BY name")
        rows = cur.fetchall()
        conn.close()
        return [Customer(id=str(r[0]), name=str(r[1]), type=str(r[2]), contact=r[3]) for r in rows]

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, name, type, contact FROM customers WHERE id=?", (str(customer_id),))
        r = cur.fetchone()
        conn.close()
        if not r:
            return None
        return Customer(id=str(r[0]), name=str(r[1]), type=str(r[2]), contact=r[3])

    def add_customer(self, name: str, type_: str, contact: Optional[str]) -> str:
        cid = uuid.uuid4().hex
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "INSERT INTO customers (id, name, type, contact) VALUES (?, ?, ?, ?)",
            (cid, name, type_, contact),
        )
        conn.commit()
        conn.close()
        return cid

    def delete_customer(self, customer_id: str) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("DELETE FROM customers WHERE id=?", (str(customer_id),))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    # ---------- Sales ----------
    def _insert_sale(self, cur: sqlite3.Cursor, sale: Sale) -> None:
        t = sale.totals
        cur.execute(
            """
            INSERT INTO sales (
                id, datetime, customer_id, customer_name, channel, affiliate,
                manual_discount_pct, bundle_applied, gross, discount, net, cost,
                margin, margin_pct, notes, stock_pending
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (
                sale.id,
                sale.datetime,
                sale.customer_id,
                sale.customer_name,
                sale.channel,
                int(bool(sale.affiliate)),
                float(sale.manual_discount_pct),
                int(bool(sale.bundle_applied)),
                int(t.gross),
                int(t.discount),
                int(t.net),
                int(t.cost),
                int(t.margin),
                float(t.margin_pct),
                sale.notes,
                int(bool(sale.stock_pending)),
            ),
        )
        for position, it in enumerate(sale.items):
            cur.execute(
                """
                INSERT INTO sale_items (sale_id, position, product_id, name, size, qty, unit_price, unit_cost)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (sale.id, position, it.product_id, it.name, it.size, int(it.qty), float(it.unit_price), float(it.unit_cost)),
            )

    def create_sale(self, sale: Sale) -> CommitResult:
        conn = self._conn()
        cur = conn.cursor()
        try:
            self._insert_sale(cur, sale)
            for it in sale.items:
                self._decrement_stock(cur, it.product_id, it.qty)
            conn.commit()
            return CommitResult(sale_id=sale.id, stock_adjusted=True)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    _SALE_COLUMNS = """
        id, datetime, customer_id, customer_name, channel, affiliate,
        manual_discount_pct, bundle_applied, gross, discount, net, cost,
        margin, margin_pct, notes, stock_pending
    """

    def _load_sales(self, cur: sqlite3.Cursor, where: str = "", params: tuple = ()) -> list[Sale]:
        cur.execute(
            f"""
            SELECT {self._SALE_COLUMNS}
            FROM sales
            {where}
            ORDER BY datetime DESC, rowid DESC
        """,
            params,
        )
        headers = cur.fetchall()
        if not headers:
            return []

        ids = [str(r[0]) for r in headers]
        marks = ", ".join("?" for _ in ids)
        cur.execute(
            f"""
            SELECT sale_id, product_id, name, size, qty, unit_price, unit_cost
            FROM sale_items
            WHERE sale_id IN ({marks})
            ORDER BY sale_id, position
        """,
            tuple(ids),
        )
        items_by_sale: dict[str, list[SaleItem]] = {}
        for r in cur.fetchall():
            items_by_sale.setdefault(str(r[0]), []).append(
                SaleItem(
                    product_id=str(r[1]),
                    name=str(r[2]),
                    size=str(r[3]),
                    qty=int(r[4]),
                    unit_price=float(r[5]),
                    unit_cost=float(r[6]),
                )
            )

        return [
            Sale(
                id=str(r[0]),
                datetime=str(r[1]),
                customer_id=(r[2] if r[2] is not None else None),
                customer_name=(r[3] if r[3] is not None else None),
                channel=str(r[4]),
                affiliate=bool(r[5]),
                manual_discount_pct=float(r[6]),
                bundle_applied=bool(r[7]),
                totals=Totals(
                    gross=int(r[8]),
                    discount=int(r[9]),
                    net=int(r[10]),
                    cost=int(r[11]),
                    margin=int(r[12]),
                    margin_pct=float(r[13]),
                ),
                notes=(r[14] if r[14] is not None else None),
                stock_pending=bool(r[15]),
                items=tuple(items_by_sale.get(str(r[0]), [])),
            )
            for r in headers
        ]

    def list_sales(self) -> list[Sale]:
        conn = self._conn()
        try:
            return self._load_sales(conn.cursor())
        finally:
            conn.close()

    def get_sale(self, sale_id: str) -> Optional[Sale]:
        conn = self._conn()
        try:
            rows = self._load_sales(conn.cursor(), "WHERE id = ?", (str(sale_id),))
        finally:
            conn.close()
        return rows[0] if rows else None

    def delete_sale(self, sale_id: str) -> bool:
        # stock is intentionally left as is
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("DELETE FROM sales WHERE id=?", (str(sale_id),))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def flag_stock_reconciliation(self, sale_id: str) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("UPDATE sales SET stock_pending=1 WHERE id=?", (str(sale_id),))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def replace_all(self, products: Iterable[Product], customers: Iterable[Customer], sales: Iterable[Sale]) -> None:
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute("DELETE FROM sale_items")
            cur.execute("DELETE FROM sales")
            cur.execute("DELETE FROM customers")
            cur.execute("DELETE FROM products")

            for p in products:
                cur.execute(
                    """
                    INSERT INTO products (id, sku, name, size, price, cost, stock, active)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (p.id, p.sku, p.name, p.size, float(p.price), float(p.cost), int(p.stock), int(p.active)),
                )
            for c in customers:
                cur.execute(
                    "INSERT INTO customers (id, name, type, contact) VALUES (?, ?, ?, ?)",
                    (c.id, c.name, c.type, c.contact),
                )
            # oldest first, so same-second sales keep their listing order
            for s in reversed(list(sales)):
                self._insert_sale(cur, s)

            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
