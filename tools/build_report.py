#!/usr/bin/env python3
"""
Offline report builder.

Takes an order list as JSON, either the bare {"issueDate", "orders"} shape
or a job.json from the web app, and writes the summary + slips PDF (and
optionally the summary workbook).

  python tools/build_report.py --json orders.json --out Order_Report.pdf --mode single --date 2024-05-14
"""
from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import List, Optional

from slice_orders.export import build_summary_xlsx, report_filename
from slice_orders.orders import OrderData, aggregate_orders
from slice_orders.report import DEFAULT_SLICE_MODE, SLICE_CAPACITY, build_report, format_issue_date
from slice_orders.slips import build_report_pdf


def load_order_data(path: str, aggregate: bool = False) -> OrderData:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(raw, dict) and "session" in raw:
        raw = (raw.get("session") or {}).get("data")
    data = OrderData.from_dict(raw)
    if aggregate:
        data = OrderData(issue_date=data.issue_date, orders=aggregate_orders(data.orders))
    return data


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--json", required=True, help="Orders JSON (or job.json)")
    ap.add_argument("--out", help="Output PDF path (default Order_Report_<date>.pdf)")
    ap.add_argument("--mode", default=DEFAULT_SLICE_MODE, choices=sorted(SLICE_CAPACITY), help="Slice type")
    ap.add_argument("--date", default=None, help="Report date YYYY-MM-DD (default today)")
    ap.add_argument("--xlsx", help="Also write the summary workbook here")
    ap.add_argument("--aggregate", action="store_true", help="Merge duplicate route/product rows first")
    args = ap.parse_args(argv)

    data = load_order_data(args.json, aggregate=args.aggregate)
    if not data.orders:
        ap.error(f"no orders in {args.json}")

    report = build_report(data, args.mode, format_issue_date(args.date))
    out = args.out or report_filename(args.date, "pdf")
    out, _ = build_report_pdf(report, out)
    if args.xlsx:
        build_summary_xlsx(report, args.xlsx)
    print(out)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
