from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional

LEADING_CODE_RE = re.compile(r"^[A-Z0-9]+\s")
TRAILING_TRAY_RE = re.compile(r"\s*Tray\s*\d*$", re.I)

NEW_ROUTE = "New Route"
NEW_PRODUCT = "New Product"


class OrderValidationError(ValueError):
    pass


@dataclass
class Order:
    route: str
    product: str
    trays: int
    in_stock: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "route": self.route,
            "product": self.product,
            "trays": int(self.trays),
            "inStock": bool(self.in_stock),
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Order":
        return cls(
            route=str(raw.get("route", "")),
            product=str(raw.get("product", "")),
            trays=int(raw.get("trays", 0)),
            in_stock=bool(raw.get("inStock", False)),
        )


@dataclass
class OrderData:
    issue_date: str = ""
    orders: List[Order] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "issueDate": self.issue_date,
            "orders": [o.to_dict() for o in self.orders],
        }

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "OrderData":
        raw = raw or {}
        return cls(
            issue_date=str(raw.get("issueDate") or ""),
            orders=[Order.from_dict(o) for o in (raw.get("orders") or [])],
        )


# =========================
# NORMALIZATION + KEYS
# =========================
def clean_product_name(name: str) -> str:
    """
    Drop the SKU-like code in front ("B441 ") and the "Tray 60" suffix:
      'B441 4" Regular Tray 60' -> '4" Regular'
    """
    if not name:
        return ""
    cleaned = LEADING_CODE_RE.sub("", name, count=1)
    cleaned = TRAILING_TRAY_RE.sub("", cleaned, count=1)
    return cleaned.strip()


def order_key(order: Order) -> str:
    return f"{order.route.strip().lower()}-{order.product.strip().lower()}"


def _strip_accents(s: str) -> str:
    return "".join(c for c in unicodedata.normalize("NFKD", s) if not unicodedata.combining(c))


def route_sort_key(route: str):
    # base letters first, then accents, then lowercase ahead of uppercase
    folded = route.casefold()
    return (_strip_accents(folded), folded, route.swapcase())


def sort_by_route(orders: Iterable[Order]) -> List[Order]:
    return sorted(orders, key=lambda o: route_sort_key(o.route))


# =========================
# AGGREGATION
# =========================
def aggregate_orders(orders: Iterable[Order]) -> List[Order]:
    """
    One order per (route, product) key. The first order seen keeps its text
    and stock flag; later ones only contribute trays.
    """
    grouped: Dict[str, Order] = {}
    for order in orders:
        key = order_key(order)
        if key in grouped:
            grouped[key].trays += int(order.trays)
        else:
            grouped[key] = replace(order, trays=int(order.trays), in_stock=bool(order.in_stock))
    return sort_by_route(grouped.values())


def unique_products(data: OrderData) -> List[str]:
    seen: Dict[str, None] = {}
    for o in data.orders:
        seen.setdefault(o.product, None)
    return list(seen)


# =========================
# EDITS (each returns a new OrderData)
# =========================
def parse_trays(value: Any) -> int:
    s = str(value if value is not None else "").strip()
    try:
        trays = int(s)
    except ValueError:
        raise OrderValidationError(f"Trays must be a whole number, got {s!r}.") from None
    if trays < 0:
        raise OrderValidationError("Trays cannot be negative.")
    return trays


def _check_index(data: OrderData, index: int) -> None:
    if index < 0 or index >= len(data.orders):
        raise IndexError(f"No order at position {index}.")


def update_order(data: OrderData, index: int, route: str, product: str, trays: Any) -> OrderData:
    _check_index(data, index)
    route = (route or "").strip()
    product = (product or "").strip()
    if not route or not product:
        raise OrderValidationError("Please enter a valid route, product name, and a non-negative number for trays.")
    count = parse_trays(trays)

    orders = list(data.orders)
    orders[index] = replace(orders[index], route=route, product=product, trays=count)
    return replace(data, orders=orders)


def delete_order(data: OrderData, index: int) -> OrderData:
    _check_index(data, index)
    return replace(data, orders=[o for i, o in enumerate(data.orders) if i != index])


def toggle_stock(data: OrderData, index: int) -> OrderData:
    _check_index(data, index)
    orders = list(data.orders)
    orders[index] = replace(orders[index], in_stock=not orders[index].in_stock)
    return replace(data, orders=orders)


def add_order(data: OrderData, default_product: str = "") -> OrderData:
    new = Order(route=NEW_ROUTE, product=default_product or NEW_PRODUCT, trays=0, in_stock=False)
    return replace(data, orders=list(data.orders) + [new])


def apply_product_to_all(data: OrderData, product: str) -> OrderData:
    product = (product or "").strip()
    if not product:
        raise OrderValidationError("Enter a product name to apply.")
    return replace(data, orders=[replace(o, product=product) for o in data.orders])
