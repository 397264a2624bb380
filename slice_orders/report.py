from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from .orders import Order, OrderData, route_sort_key

STOCK_ROUTE = "IN STOCK"

SLICE_CAPACITY: Dict[str, int] = {
    "double": 60,
    "single": 100,
}
DEFAULT_SLICE_MODE = "double"

# (max name length, tier, px at 96dpi)
PRODUCT_FONT_TIERS: List[Tuple[int, str, int]] = [
    (18, "5xl", 48),
    (22, "4xl", 36),
    (28, "3xl", 30),
    (35, "2xl", 24),
    (45, "xl", 20),
]
PRODUCT_FONT_FALLBACK = ("lg", 18)
ROUTE_FONT = ("7xl", 72)

DISPLAY_DATE_FMT = "%a %d %b %Y"


class UnknownSliceMode(ValueError):
    pass


@dataclass(frozen=True)
class PageOrder:
    route: str
    product: str
    trays: int
    in_stock: bool
    page_key: str
    page_number: int
    total_pages: int


@dataclass(frozen=True)
class SummaryRow:
    route: str
    product: str
    trays: int
    excluded: bool


@dataclass
class Summary:
    date_label: str
    primary_product: str
    total_trays: int
    rows: List[SummaryRow] = field(default_factory=list)


@dataclass
class Report:
    slice_mode: str
    summary: Summary
    pages: List[PageOrder] = field(default_factory=list)

    @property
    def page_count(self) -> int:
        # summary page + slips
        return 1 + len(self.pages)


# =========================
# DATES
# =========================
def parse_selected_date(value: Optional[str]) -> date:
    if not value:
        return date.today()
    return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()


def format_issue_date(value: Optional[str]) -> str:
    return parse_selected_date(value).strftime(DISPLAY_DATE_FMT)


# =========================
# FILTERS
# =========================
def is_stock_route(route: str) -> bool:
    return (route or "").strip().upper() == STOCK_ROUTE


def is_excluded_from_production(order: Order) -> bool:
    return bool(order.in_stock) or is_stock_route(order.route)


def valid_orders(orders: List[Order]) -> List[Order]:
    return [o for o in orders if int(o.trays) >= 0]


def total_trays_to_produce(orders: List[Order]) -> int:
    return sum(int(o.trays) for o in valid_orders(orders) if not is_excluded_from_production(o))


def primary_product(orders: List[Order]) -> str:
    valid = valid_orders(orders)
    if not valid:
        return "N/A"
    counts = Counter(o.product for o in valid)
    top = max(counts.values())
    # ties go to the product whose first appearance is latest
    return [p for p, n in counts.items() if n == top][-1]


def summary_rows(orders: List[Order]) -> List[SummaryRow]:
    rows = sorted(
        valid_orders(orders),
        key=lambda o: (is_stock_route(o.route), route_sort_key(o.route)),
    )
    return [
        SummaryRow(route=o.route, product=o.product, trays=int(o.trays), excluded=is_excluded_from_production(o))
        for o in rows
    ]


# =========================
# PAGINATION
# =========================
def slice_capacity(mode: str) -> int:
    try:
        return SLICE_CAPACITY[mode]
    except KeyError:
        raise UnknownSliceMode(f"Unknown slice mode {mode!r} (expected one of {', '.join(SLICE_CAPACITY)}).") from None


def paginate_order(order: Order, index: int, mode: str) -> List[PageOrder]:
    capacity = slice_capacity(mode)
    trays = int(order.trays)
    if is_excluded_from_production(order) or trays <= 0:
        return []

    total_pages = math.ceil(trays / capacity)
    pages: List[PageOrder] = []
    remaining = trays
    page_no = 1
    while remaining > 0:
        on_page = min(remaining, capacity)
        pages.append(
            PageOrder(
                route=order.route,
                product=order.product,
                trays=on_page,
                in_stock=bool(order.in_stock),
                page_key=f"{index}-{page_no}",
                page_number=page_no,
                total_pages=total_pages,
            )
        )
        remaining -= on_page
        page_no += 1
    return pages


def build_report(data: OrderData, mode: str = DEFAULT_SLICE_MODE, date_label: Optional[str] = None) -> Report:
    """
    Summary first, then slip pages in order-list order.
    date_label overrides the extracted issue date (the user-picked date).
    """
    slice_capacity(mode)
    orders = list(data.orders)
    summary = Summary(
        date_label=date_label if date_label is not None else data.issue_date,
        primary_product=primary_product(orders),
        total_trays=total_trays_to_produce(orders),
        rows=summary_rows(orders),
    )
    pages: List[PageOrder] = []
    for idx, order in enumerate(orders):
        pages.extend(paginate_order(order, idx, mode))
    return Report(slice_mode=mode, summary=summary, pages=pages)


# =========================
# FONT TIERS
# =========================
def product_font_tier(name: str) -> Tuple[str, int]:
    n = len(name or "")
    for limit, tier, px in PRODUCT_FONT_TIERS:
        if n <= limit:
            return tier, px
    return PRODUCT_FONT_FALLBACK


def route_font_tier(name: str) -> Tuple[str, int]:
    return ROUTE_FONT
