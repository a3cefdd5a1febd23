from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from rincon.domain.models import SaleItem, Totals
from rincon.domain.money import clamp, percentage, round_half_up


@dataclass(frozen=True)
class PricingPolicy:
    bundle_price: int = 12500
    affiliate_rate: float = 0.10
    large_size_marker: str = "1 kg"
    small_size_marker: str = "425"


DEFAULT_POLICY = PricingPolicy()


@dataclass(frozen=True)
class BundleResult:
    discount: int
    pairs: int


def _bucket(items: list[SaleItem], marker: str) -> tuple[int, float]:
    matched = [it for it in items if marker in it.size]
    qty = sum(int(it.qty) for it in matched)
    if qty <= 0:
        return 0, 0.0
    return qty, sum(float(it.unit_price) * int(it.qty) for it in matched) / qty


def evaluate_bundle(items: Iterable[SaleItem], apply: bool, policy: PricingPolicy = DEFAULT_POLICY) -> BundleResult:
    """
    "1 kg + 425 g" pack: every large jar paired with a small jar is sold at
    policy.bundle_price.

    Sizes are matched by substring, so "1 kg caja" counts as a large jar. The
    regular pair price is the sum of the quantity-weighted average unit price
    of each bucket; unpaired jars keep their regular price.
    """
    if not apply:
        return BundleResult(0, 0)

    items = list(items)
    qty_large, avg_large = _bucket(items, policy.large_size_marker)
    qty_small, avg_small = _bucket(items, policy.small_size_marker)
    pairs = min(qty_large, qty_small)
    if pairs <= 0:
        return BundleResult(0, 0)

    per_pair = max(0.0, (avg_large + avg_small) - policy.bundle_price)
    return BundleResult(round_half_up(per_pair * pairs), pairs)


def calculate_totals(
    items: Iterable[SaleItem],
    manual_discount_pct: float,
    apply_bundle: bool,
    is_affiliate: bool,
    policy: PricingPolicy = DEFAULT_POLICY,
) -> Totals:
    """
    Discounts stack in a fixed order, each on what the previous one left:
    bundle on gross, affiliate on gross - bundle, manual % on the remainder.
    Every step is rounded to a whole unit before the next one runs.
    """
    items = list(items)
    gross = round_half_up(sum(it.line_total for it in items))

    bundle = evaluate_bundle(items, apply_bundle, policy).discount
    after_bundle = gross - bundle

    affiliate = round_half_up(after_bundle * policy.affiliate_rate) if is_affiliate else 0
    pct = clamp(float(manual_discount_pct), 0.0, 100.0)
    manual = round_half_up((after_bundle - affiliate) * (pct / 100))

    net = max(0, after_bundle - affiliate - manual)
    cost = round_half_up(sum(float(it.unit_cost) * int(it.qty) for it in items))
    margin = max(0, net - cost)

    return Totals(
        gross=gross,
        discount=bundle + affiliate + manual,
        net=net,
        cost=cost,
        margin=margin,
        margin_pct=percentage(margin, net),
    )
