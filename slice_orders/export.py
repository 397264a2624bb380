from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import pandas as pd

from .report import Report, parse_selected_date


def report_filename(selected_date: str, ext: str = "pdf") -> str:
    stem = "Order_Report" if ext == "pdf" else "Order_Summary"
    return f"{stem}_{parse_selected_date(selected_date).isoformat()}.{ext}"


def summary_frame(report: Report) -> pd.DataFrame:
    rows = [
        [r.route, r.product, "In Stock" if r.excluded else "", r.trays]
        for r in report.summary.rows
    ]
    df = pd.DataFrame(rows, columns=["Route / Location", "Product", ".S", "Trays"])
    total = pd.DataFrame([["", "", "Total Trays (To Produce)", report.summary.total_trays]], columns=df.columns)
    return pd.concat([df, total], ignore_index=True)


def slips_frame(report: Report) -> pd.DataFrame:
    rows = [
        [p.route, p.product, p.trays, f"{p.page_number}/{p.total_pages}"]
        for p in report.pages
    ]
    return pd.DataFrame(rows, columns=["Route", "Product", "Trays", "Page"])


def build_summary_xlsx(report: Report, out_xlsx: str) -> Dict[str, Any]:
    """
    Two sheets:
      Summary : Route / Location | Product | .S | Trays  (+ total row)
      Slips   : one row per printed slip page
    """
    Path(out_xlsx).parent.mkdir(parents=True, exist_ok=True)
    summary = summary_frame(report)
    slips = slips_frame(report)
    with pd.ExcelWriter(out_xlsx, engine="openpyxl") as writer:
        summary.to_excel(writer, sheet_name="Summary", index=False)
        slips.to_excel(writer, sheet_name="Slips", index=False)

        ws = writer.sheets["Summary"]
        ws.column_dimensions["A"].width = 28
        ws.column_dimensions["B"].width = 36
        ws.column_dimensions["C"].width = 24

    print(f"[report] summary workbook => {out_xlsx}", flush=True)
    return {"rows": len(report.summary.rows), "slips": len(slips), "path": str(out_xlsx)}
