from dataclasses import replace
from pathlib import Path

import pytest
import requests
from conftest import item

from rincon.domain.errors import InvalidBackupError
from rincon.domain.models import Sale, Totals
from rincon.repositories.remote_repo import PRODUCT_COLUMNS, RemoteRepository
from rincon.services.backup_service import BackupService


def _sale(*items):
    return Sale(
        id="",
        datetime="2024-05-01 12:00:00",
        channel="IG",
        items=tuple(items),
        totals=Totals(gross=15480, discount=2980, net=12500, cost=6294, margin=6206, margin_pct=49.6),
        bundle_applied=True,
    )


class FakeRemote(RemoteRepository):
    def __init__(self, fail_rpc_for=(), fail_details=False, fail_cleanup=False):
        super().__init__("https://rincon.example.co/", "anon-key")
        self.calls = []
        self.fail_rpc_for = set(fail_rpc_for)
        self.fail_details = fail_details
        self.fail_cleanup = fail_cleanup
        self.responses = {}

    def _request(self, method, path, *, params=None, json=None, prefer=None):
        self.calls.append((method, path, params, json))
        if (method, path) in self.responses:
            return self.responses[(method, path)]
        if (method, path) == ("POST", "pedidos"):
            return [{"id": "p-1"}]
        if (method, path) == ("POST", "detalle_pedido"):
            if self.fail_details:
                raise requests.ConnectionError("connection reset")
            return None
        if path == "rpc/decrement_stock":
            if json["prod_id"] in self.fail_rpc_for:
                raise requests.HTTPError("404 Client Error: function decrement_stock not found")
            return None
        if method == "DELETE":
            if self.fail_cleanup:
                raise requests.Timeout("read timed out")
            return [{"id": "p-1"}]
        raise AssertionError(f"unexpected call {method} {path}")


def test_create_sale_writes_header_details_then_decrements():
    repo = FakeRemote()

    result = repo.create_sale(_sale(item("1 kg", 1, 9990, 4228), item("425 g", 1, 5490, 2066)))

    assert result.sale_id == "p-1"
    assert result.stock_adjusted is True
    assert [c[1] for c in repo.calls] == ["pedidos", "detalle_pedido", "rpc/decrement_stock", "rpc/decrement_stock"]

    header = repo.calls[0][3]
    assert header["canal"] == "IG"
    assert header["neto"] == 12500
    assert header["aplica_pack"] is True
    details = repo.calls[1][3]
    assert [d["cantidad"] for d in details] == [1, 1]
    assert all(d["pedido_id"] == "p-1" for d in details)
    assert repo.calls[2][3] == {"prod_id": "Mantequilla de Maní Natural-1 kg", "qty": 1}


def test_failed_decrement_is_reported_without_fallback(caplog):
    failing_id = "Mantequilla de Maní Natural-1 kg"
    repo = FakeRemote(fail_rpc_for={failing_id})

    with caplog.at_level("ERROR", logger="rincon.remote"):
        result = repo.create_sale(_sale(item("1 kg", 2, 9990), item("425 g", 1, 5490)))

    assert result.stock_adjusted is False
    assert result.failed_product_ids == (failing_id,)
    # no direct stock write as a substitute for the RPC
    assert not any(path == "productos" for _, path, _, _ in repo.calls)
    assert "stock_decrement_failed sale_id=p-1" in caplog.text


def test_failed_details_remove_the_header_and_raise():
    repo = FakeRemote(fail_details=True)

    with pytest.raises(requests.ConnectionError):
        repo.create_sale(_sale(item("1 kg", 1, 9990)))

    assert repo.calls[-1][:3] == ("DELETE", "pedidos", {"id": "eq.p-1"})
    assert not any(path == "rpc/decrement_stock" for _, path, _, _ in repo.calls)


def test_list_sales_rebuilds_sales_from_headers_and_details():
    repo = FakeRemote()
    repo.responses[("GET", "pedidos")] = [
        {
            "id": "p-1",
            "fecha": "2024-05-01T12:00:00",
            "cliente_id": None,
            "cliente_nombre": "Ana",
            "canal": "Box",
            "afiliado_box": True,
            "desc_pct": 0,
            "aplica_pack": False,
            "bruto": 9990,
            "descuento": 999,
            "neto": 8991,
            "costo": 4228,
            "margen": 4763,
            "notas": None,
        }
    ]
    repo.responses[("GET", "detalle_pedido")] = [
        {
            "pedido_id": "p-1",
            "producto_id": "prod-1",
            "producto_nombre": "Mantequilla de Maní Natural",
            "tamano": "1 kg",
            "precio_unit": 9990,
            "costo_unit": 4228,
            "cantidad": 1,
        }
    ]

    sales = repo.list_sales()

    assert len(sales) == 1
    sale = sales[0]
    assert sale.datetime == "2024-05-01 12:00:00"
    assert sale.customer_name == "Ana"
    assert sale.affiliate is True
    assert sale.stock_pending is False
    assert sale.totals.margin_pct == 53.0
    assert sale.items[0].product_id == "prod-1"
    assert repo.calls[1][2]["pedido_id"] == "in.(p-1)"


def test_list_sales_skips_details_when_there_are_no_headers():
    repo = FakeRemote()
    repo.responses[("GET", "pedidos")] = []

    assert repo.list_sales() == []
    assert len(repo.calls) == 1


def test_delete_product_deactivates_when_product_was_sold():
    repo = FakeRemote()
    repo.responses[("GET", "detalle_pedido")] = [{"pedido_id": "p-1"}]
    repo.responses[("PATCH", "productos")] = [{"id": "prod-1"}]

    assert repo.delete_product("prod-1") is True
    assert repo.calls[-1] == ("PATCH", "productos", {"id": "eq.prod-1"}, {"activo": False})


def test_update_product_rejects_unknown_fields():
    with pytest.raises(ValueError, match="Unknown product fields"):
        FakeRemote().update_product("prod-1", colour="red")


class FakeResponse:
    def __init__(self, payload=None, status=200):
        self.payload = payload
        self.status_code = status
        self.content = b"" if payload is None else b"[...]"

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        return self.payload


class FakeSession(requests.Session):
    def __init__(self, response):
        super().__init__()
        self.response = response
        self.seen = []

    def request(self, method, url, **kwargs):
        self.seen.append((method, url, kwargs))
        return self.response


def test_requests_go_to_the_rest_endpoint_with_api_key_headers():
    session = FakeSession(FakeResponse([{"id": "c-1", "nombre": "Ana", "tipo": "B2C", "contacto": None}]))
    repo = RemoteRepository("https://rincon.example.co/", "anon-key", timeout=3, session=session)

    customers = repo.list_customers()

    assert customers[0].name == "Ana"
    method, url, kwargs = session.seen[0]
    assert method == "GET"
    assert url == "https://rincon.example.co/rest/v1/clientes"
    assert kwargs["timeout"] == 3.0
    assert session.headers["apikey"] == "anon-key"
    assert session.headers["Authorization"] == "Bearer anon-key"


def test_http_errors_propagate():
    repo = RemoteRepository("https://rincon.example.co", "anon-key", session=FakeSession(FakeResponse(status=500)))

    with pytest.raises(requests.HTTPError):
        repo.list_products()


def test_sale_header_lets_the_remote_generate_the_id():
    repo = FakeRemote()

    repo.create_sale(_sale(item("1 kg", 1, 9990)))

    assert "id" not in repo.calls[0][3]
    assert repo.calls[0][3]["fecha"].startswith("2024-05-01T12:00:00")


def test_cleanup_failure_does_not_hide_the_detail_error(caplog):
    repo = FakeRemote(fail_details=True, fail_cleanup=True)

    with caplog.at_level("ERROR", logger="rincon.remote"):
        with pytest.raises(requests.ConnectionError, match="connection reset"):
            repo.create_sale(_sale(item("1 kg", 1, 9990)))

    assert "sale_header_cleanup_failed sale_id=p-1" in caplog.text


def test_schema_script_declares_every_column_the_store_writes():
    schema = (Path(__file__).resolve().parents[1] / "sql" / "supabase_schema.sql").read_text(encoding="utf-8")
    sale = _sale(item("1 kg", 1, 9990))
    columns = (
        set(RemoteRepository._sale_to_row(sale))
        | set(RemoteRepository._detail_rows("p-1", sale.items)[0])
        | set(PRODUCT_COLUMNS.values())
        | {"contacto", "tipo"}
    )

    for column in columns:
        assert f"  {column} " in schema or f" add column if not exists {column} " in schema, column
    assert "create or replace function decrement_stock(prod_id uuid, qty integer)" in schema


def test_invalid_snapshot_never_reaches_the_remote_tables(tmp_path: Path):
    repo = FakeRemote()
    product = {"id": "x", "name": "Natural", "size": "1 kg", "price": 9990, "cost": 4228, "stock": 1}

    with pytest.raises(InvalidBackupError, match="duplicate product id"):
        BackupService(repo, tmp_path).load_snapshot({"products": [product, product], "customers": [], "sales": []})

    assert repo.calls == []


def test_replace_all_reloads_tables_after_clearing_them():
    repo = FakeRemote()
    repo.responses[("POST", "productos")] = None
    repo.responses[("POST", "pedidos")] = None
    sale = replace(_sale(item("1 kg", 1, 9990)), id="s-9")

    repo.replace_all([], [], [sale])

    assert [(m, p) for m, p, _, _ in repo.calls] == [
        ("DELETE", "detalle_pedido"),
        ("DELETE", "pedidos"),
        ("DELETE", "clientes"),
        ("DELETE", "productos"),
        ("POST", "pedidos"),
        ("POST", "detalle_pedido"),
    ]
    assert repo.calls[4][3][0]["id"] == "s-9"
