import math
from datetime import date

import pytest

from slice_orders.orders import Order, OrderData
from slice_orders.report import (
    UnknownSliceMode,
    build_report,
    format_issue_date,
    paginate_order,
    parse_selected_date,
    primary_product,
    product_font_tier,
    route_font_tier,
    slice_capacity,
    summary_rows,
    total_trays_to_produce,
)


def test_slice_capacity():
    assert slice_capacity("double") == 60
    assert slice_capacity("single") == 100
    with pytest.raises(UnknownSliceMode):
        slice_capacity("triple")


@pytest.mark.parametrize(
    "trays,mode,expected",
    [
        (130, "double", [60, 60, 10]),
        (125, "double", [60, 60, 5]),
        (121, "double", [60, 60, 1]),
        (60, "double", [60]),
        (130, "single", [100, 30]),
        (1, "single", [1]),
        (0, "double", []),
    ],
)
def test_paginate_splits_by_capacity(trays, mode, expected):
    pages = paginate_order(Order("R", "P", trays), 3, mode)
    assert [p.trays for p in pages] == expected
    assert [p.page_number for p in pages] == list(range(1, len(expected) + 1))
    assert all(p.total_pages == len(expected) for p in pages)
    assert [p.page_key for p in pages] == [f"3-{i}" for i in range(1, len(expected) + 1)]


def test_paginate_skips_stock():
    assert paginate_order(Order("R", "P", 50, in_stock=True), 0, "double") == []
    assert paginate_order(Order(" in stock ", "P", 50), 0, "double") == []


def test_totals_exclude_stock(sample_data):
    assert total_trays_to_produce(sample_data.orders) == 142


def test_primary_product_counts_orders_not_trays():
    orders = [Order("A", "Big", 500), Order("B", "Small", 1), Order("C", "Small", 1)]
    assert primary_product(orders) == "Small"
    assert primary_product([]) == "N/A"


def test_primary_product_tie_goes_to_last_seen():
    assert primary_product([Order("A", "X", 1), Order("B", "Y", 1)]) == "Y"
    assert primary_product([Order("A", "X", 1), Order("B", "Y", 1), Order("C", "X", 1)]) == "X"


def test_summary_rows_put_stock_route_last(sample_data):
    rows = summary_rows(sample_data.orders)
    assert [r.route for r in rows] == ["ATHLONE", "finnerty", "Galway", "IN STOCK"]
    assert [r.excluded for r in rows] == [False, False, True, True]


def test_summary_rows_drop_negative_trays():
    rows = summary_rows([Order("A", "P", -2), Order("B", "P", 0)])
    assert [r.route for r in rows] == ["B"]


def test_build_report(sample_data):
    report = build_report(sample_data, "double")
    assert [(p.route, p.trays) for p in report.pages] == [
        ("ATHLONE", 60),
        ("ATHLONE", 60),
        ("ATHLONE", 10),
        ("finnerty", 12),
    ]
    assert report.page_count == 5
    assert report.summary.date_label == "TUE 14 MAY"
    assert report.summary.total_trays == 142
    assert report.summary.primary_product == "Sliced Pan"


def test_build_report_date_override_and_bad_mode(sample_data):
    assert build_report(sample_data, "single", "Mon 01 Jan 2024").summary.date_label == "Mon 01 Jan 2024"
    with pytest.raises(UnknownSliceMode):
        build_report(sample_data, "half")


def test_empty_report_is_summary_only():
    report = build_report(OrderData(), "double")
    assert report.pages == []
    assert report.page_count == 1
    assert report.summary.primary_product == "N/A"


def test_dates():
    assert parse_selected_date("2024-05-14") == date(2024, 5, 14)
    assert parse_selected_date("") == date.today()
    assert format_issue_date("2024-05-14") == "Tue 14 May 2024"
    with pytest.raises(ValueError):
        parse_selected_date("14/05/2024")


@pytest.mark.parametrize(
    "length,tier",
    [(5, "5xl"), (18, "5xl"), (19, "4xl"), (22, "4xl"), (28, "3xl"), (35, "2xl"), (45, "xl"), (46, "lg")],
)
def test_product_font_tier(length, tier):
    assert product_font_tier("x" * length)[0] == tier


def test_route_font_is_fixed():
    assert route_font_tier("A") == route_font_tier("A VERY LONG ROUTE NAME INDEED")


def test_negative_trays_ignored_everywhere():
    assert paginate_order(Order("R", "P", -5), 0, "double") == []
    data = OrderData(orders=[Order("Cork", "Brown", 70), Order("Ennis", "Brown", -5)])
    report = build_report(data, "double")
    assert report.summary.total_trays == 70
    assert [r.route for r in report.summary.rows] == ["Cork"]
    assert {p.route for p in report.pages} == {"Cork"}


@pytest.mark.parametrize("mode", ["double", "single"])
def test_pages_cover_every_tray_count(mode):
    cap = slice_capacity(mode)
    for trays in range(0, 251):
        pages = paginate_order(Order("R", "P", trays), 0, mode)
        assert len(pages) == math.ceil(trays / cap)
        assert sum(p.trays for p in pages) == trays
        assert all(p.trays == cap for p in pages[:-1])
        if pages:
            assert 1 <= pages[-1].trays <= cap


def test_single_never_needs_more_pages_than_double():
    for trays in range(0, 251):
        order = Order("R", "P", trays)
        assert len(paginate_order(order, 0, "single")) <= len(paginate_order(order, 0, "double"))


def test_summary_rows_sort_accented_routes():
    rows = summary_rows([Order("Ennis", "P", 1), Order("IN STOCK", "P", 1), Order("Éire Sq", "P", 1)])
    assert [r.route for r in rows] == ["Éire Sq", "Ennis", "IN STOCK"]
