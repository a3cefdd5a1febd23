from __future__ import annotations

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from rincon.domain.indicators import Kpis, ProductRanking, channel_breakdown, period_kpis, top_products


class ReportingService:
    def __init__(self, repo):
        self.repo = repo

    def kpis(self) -> Kpis:
        return period_kpis(self.repo.list_sales())

    def top_products(self, limit: int = 5) -> list[ProductRanking]:
        return top_products(self.repo.list_sales(), limit)

    def channel_breakdown(self) -> list[tuple[str, int]]:
        return channel_breakdown(self.repo.list_sales())

    def export_sales_report_excel(self, path: str) -> None:
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0"

        def pct(cell):
            cell.number_format = "0.0"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, start_col: int, end_row: int, end_col: int):
            ref = f"{get_column_letter(start_col)}{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        sales = self.repo.list_sales()
        kpis = period_kpis(sales)

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Summary"
        ws["A1"].font = Font(bold=True, size=14)

        rows = [
            ("Tickets", kpis.tickets, "int"),
            ("Gross", kpis.gross, "money"),
            ("Net", kpis.net, "money"),
            ("Cost", kpis.cost, "money"),
            ("Margin", kpis.margin, "money"),
            ("Margin %", kpis.margin_pct, "pct"),
            ("Average ticket", kpis.average_ticket, "money"),
        ]

        start_row = 3
        for i, (label, val, kind) in enumerate(rows):
            r = start_row + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = val
            if kind == "money":
                money(ws[f"B{r}"])
            elif kind == "pct":
                pct(ws[f"B{r}"])

        set_widths(ws, {"A": 22, "B": 18})

        # -------- 2) Sales Detail --------
        ws2 = wb.create_sheet("Sales Detail")
        ws2.append([
            "Sale ID", "Datetime", "Customer", "Channel",
            "Product", "Size", "Qty", "Unit Price", "Unit Cost", "Line Total",
        ])
        bold_row(ws2, 1)

        out_row = 2
        for s in sales:
            for it in s.items:
                ws2.append([
                    s.id, s.datetime, s.customer_name or "", s.channel,
                    it.name, it.size, int(it.qty), float(it.unit_price), float(it.unit_cost),
                    it.line_total,
                ])
                money(ws2[f"H{out_row}"])
                money(ws2[f"I{out_row}"])
                money(ws2[f"J{out_row}"])
                out_row += 1

        ws2.freeze_panes = "A2"
        set_widths(ws2, {
            "A": 34, "B": 20, "C": 24, "D": 12,
            "E": 34, "F": 10, "G": 6, "H": 14, "I": 14, "J": 14,
        })
        if ws2.max_row >= 2:
            add_table(ws2, "SalesDetail", 1, 1, ws2.max_row, 10)

        # -------- 3) Top Products --------
        ws3 = wb.create_sheet("Top Products")
        ws3.append(["Product", "Size", "Units", "Revenue"])
        bold_row(ws3, 1)
        for i, row in enumerate(top_products(sales), start=2):
            ws3.append([row.name, row.size, row.qty, row.revenue])
            money(ws3[f"D{i}"])
        set_widths(ws3, {"A": 34, "B": 10, "C": 8, "D": 14})

        # -------- 4) Channels --------
        ws4 = wb.create_sheet("Channels")
        ws4.append(["Channel", "Net"])
        bold_row(ws4, 1)
        for i, (channel, net) in enumerate(channel_breakdown(sales), start=2):
            ws4.append([channel, net])
            money(ws4[f"B{i}"])
        set_widths(ws4, {"A": 16, "B": 14})

        wb.save(path)
