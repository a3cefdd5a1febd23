from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from rincon.domain.models import Sale
from rincon.domain.money import percentage, round_half_up


@dataclass(frozen=True)
class Kpis:
    gross: int
    net: int
    cost: int
    margin: int
    margin_pct: float
    tickets: int
    average_ticket: int


@dataclass(frozen=True)
class ProductRanking:
    name: str
    size: str
    qty: int
    revenue: float


def period_kpis(sales: Iterable[Sale]) -> Kpis:
    sales = list(sales)
    gross = sum(s.totals.gross for s in sales)
    net = sum(s.totals.net for s in sales)
    cost = sum(s.totals.cost for s in sales)
    margin = sum(s.totals.margin for s in sales)
    tickets = len(sales)
    return Kpis(
        gross=gross,
        net=net,
        cost=cost,
        margin=margin,
        # from the sums, never an average of per-sale percentages
        margin_pct=percentage(margin, net),
        tickets=tickets,
        average_ticket=round_half_up(net / tickets) if tickets > 0 else 0,
    )


def top_products(sales: Iterable[Sale], limit: int = 5) -> list[ProductRanking]:
    """Best sellers by undiscounted line revenue, grouped by (name, size)."""
    groups: dict[tuple[str, str], list] = {}
    for sale in sales:
        for it in sale.items:
            acc = groups.setdefault((it.name, it.size), [0, 0.0])
            acc[0] += int(it.qty)
            acc[1] += it.line_total

    rows = [ProductRanking(name=k[0], size=k[1], qty=v[0], revenue=v[1]) for k, v in groups.items()]
    # sorted() is stable with reverse=True, ties keep grouping order
    rows = sorted(rows, key=lambda r: r.revenue, reverse=True)
    return rows[: int(limit)]


def channel_breakdown(sales: Iterable[Sale]) -> list[tuple[str, int]]:
    by_channel: dict[str, int] = {}
    for sale in sales:
        by_channel[sale.channel] = by_channel.get(sale.channel, 0) + int(sale.totals.net)
    return sorted(by_channel.items(), key=lambda kv: kv[1], reverse=True)
