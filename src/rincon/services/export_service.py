from __future__ import annotations

import csv
import logging
from pathlib import Path

from rincon.domain.models import Sale

log = logging.getLogger(__name__)

SALES_CSV_HEADERS = [
    "Fecha", "Cliente", "Canal", "Items",
    "Bruto", "Descuento", "Neto", "Costo", "Margen", "Margen_%", "Notas",
]


def sale_to_row(sale: Sale) -> list:
    channel = sale.channel + (" (Afiliado)" if sale.affiliate else "")
    items = " | ".join(f"{it.name} {it.size} x{it.qty}" for it in sale.items)
    t = sale.totals
    return [
        sale.datetime,
        sale.customer_name or "-",
        channel,
        items,
        t.gross,
        t.discount,
        t.net,
        t.cost,
        t.margin,
        t.margin_pct,
        sale.notes or "",
    ]


class ExportService:
    def __init__(self, repo):
        self.repo = repo

    def export_sales_csv(self, path: Path | str) -> Path:
        """One row per sale, UTF-8 with BOM so spreadsheet apps pick the encoding."""
        target = Path(path)
        sales = self.repo.list_sales()
        with target.open("w", newline="", encoding="utf-8-sig") as fh:
            writer = csv.writer(fh)
            writer.writerow(SALES_CSV_HEADERS)
            for sale in sales:
                writer.writerow(sale_to_row(sale))
        log.info("sales_csv_exported path=%s rows=%s", target, len(sales))
        return target
