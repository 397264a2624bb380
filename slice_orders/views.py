from __future__ import annotations

from html import escape
from typing import List

from .report import SLICE_CAPACITY
from .session import Session

# Shared look with the upload + progress pages in main.py
BASE_CSS = """
body{font-family:system-ui,-apple-system,Segoe UI,Roboto,Arial,sans-serif;margin:0;background:#0b0f14;color:#e8eef6}
.wrap{max-width:1180px;margin:0 auto;padding:18px}
.card{background:#101826;border:1px solid #1c2a3a;border-radius:18px;padding:20px;box-shadow:0 14px 36px rgba(0,0,0,0.35);margin-bottom:18px}
h2{margin:0 0 12px 0;font-size:20px}
.muted{color:#97a7bd;font-size:13px}
.row{display:flex;gap:10px;flex-wrap:wrap;align-items:center}
.grid{display:grid;grid-template-columns:repeat(auto-fill,minmax(280px,1fr));gap:14px}
input[type=text],input[type=number],input[type=date]{padding:9px;border-radius:10px;border:1px solid #1c2a3a;background:#0f1722;color:#e8eef6}
input[type=file]{padding:10px;border-radius:12px;border:1px solid #1c2a3a;background:#0f1722;color:#e8eef6}
button,.btn{padding:10px 14px;border-radius:10px;border:0;background:#3fa7ff;color:#001018;font-weight:800;cursor:pointer;text-decoration:none;display:inline-block}
.btn.grey,button.grey{background:#2a3a4d;color:#e8eef6}
.btn.red,button.red{background:#ff6b6b;color:#1a0000}
.btn.green,button.green{background:#4cd07d;color:#001a08}
.error{color:#ffb4b4;background:#291414;border:1px solid #3a1c1c;padding:10px 12px;border-radius:10px;font-size:13px;white-space:pre-wrap;margin-bottom:14px}
.order{background:#0f1722;border:1px solid #1c2a3a;border-radius:14px;padding:14px}
.order.stock{opacity:.55}
.order .route{font-size:18px;font-weight:800}
.order .trays{font-size:26px;font-weight:800;color:#3fa7ff}
.order form{margin:6px 0 0 0}
.thumb{width:150px;height:110px;object-fit:cover;border-radius:10px;border:1px solid #1c2a3a;background:#0f1722;display:flex;align-items:center;justify-content:center;font-size:12px;color:#97a7bd;overflow:hidden}
.chip{background:#1c2a3a;color:#e8eef6;border-radius:999px;padding:4px 10px;font-size:12px;border:0;cursor:pointer}
.page img{width:100%;max-width:820px;display:block;margin:0 auto 18px auto;background:#fff;box-shadow:0 10px 30px rgba(0,0,0,.45)}
@media print{
  body{background:#fff}
  .no-print{display:none !important}
  .page img{box-shadow:none;margin:0;max-width:none;page-break-after:always}
}
"""


def _page(title: str, body: str) -> str:
    return (
        "<!doctype html><html><head>"
        '<meta name="viewport" content="width=device-width, initial-scale=1"/>'
        f"<title>{escape(title)}</title><style>{BASE_CSS}</style></head>"
        f"<body><div class=\"wrap\">{body}</div></body></html>"
    )


def _error_box(session: Session) -> str:
    if not session.error:
        return ""
    return f'<div class="error">{escape(session.error)}</div>'


def queue_page(jid: str, session: Session) -> str:
    tiles: List[str] = []
    for i, f in enumerate(session.files):
        if f.preview:
            thumb = f'<img class="thumb" src="/job/{jid}/files/{i}/preview" alt="Preview {escape(f.name)}"/>'
        else:
            ext = (f.name.rsplit(".", 1)[-1] if "." in f.name else "file").upper()
            thumb = f'<div class="thumb">{escape(ext)}</div>'
        tiles.append(
            f"""<div>
  {thumb}
  <div class="muted">{escape(f.name)}</div>
  <form method="post" action="/job/{jid}/files/{i}/delete"><button class="grey" type="submit">Remove</button></form>
</div>"""
        )

    n = len(session.files)
    process = ""
    if n:
        process = f"""<form method="post" action="/job/{jid}/process">
  <button class="green" type="submit">Process {n} File{'' if n == 1 else 's'}</button>
</form>"""

    body = f"""
<div class="card">
  <h2>Upload and Process Files</h2>
  {_error_box(session)}
  <form method="post" action="/job/{jid}/files" enctype="multipart/form-data" class="row">
    <input type="file" name="files" multiple accept="image/*,.pdf,.docx,.accdb,application/pdf" required/>
    <button type="submit">Add to Queue</button>
  </form>
</div>
<div class="card">
  <h2>File Queue ({n})</h2>
  <div class="row">{''.join(tiles) or '<span class="muted">No files yet.</span>'}</div>
  <div style="margin-top:14px">{process}</div>
</div>
"""
    return _page("Slice Orders", body)


def orders_page(jid: str, session: Session) -> str:
    chips = "".join(
        f"""<form method="post" action="/job/{jid}/settings" style="display:inline">
  <input type="hidden" name="global_product" value="{escape(p)}"/>
  <button class="chip" type="submit">Set to "{escape(p)}"</button>
</form>"""
        for p in session.products
    )

    modes = "".join(
        f"""<label><input type="radio" name="slice_mode" value="{m}" {'checked' if m == session.slice_mode else ''}/> {m.title()} ({cap})</label>"""
        for m, cap in SLICE_CAPACITY.items()
    )

    cards: List[str] = []
    for i, o in enumerate(session.data.orders):
        stock_label = "In Stock: yes" if o.in_stock else "In Stock: no"
        cards.append(
            f"""<div class="order{' stock' if o.in_stock else ''}">
  <div class="route">{escape(o.route)}</div>
  <div class="muted">Product</div><div>{escape(o.product)}</div>
  <div class="muted">Trays</div><div class="trays">{o.trays}</div>
  <details><summary class="muted">Edit</summary>
    <form method="post" action="/job/{jid}/orders/{i}">
      <input type="text" name="route" value="{escape(o.route)}"/>
      <input type="text" name="product" value="{escape(o.product)}"/>
      <input type="number" name="trays" value="{o.trays}"/>
      <button type="submit">Save</button>
    </form>
  </details>
  <div class="row">
    <form method="post" action="/job/{jid}/orders/{i}/stock"><button class="grey" type="submit">{stock_label}</button></form>
    <form method="post" action="/job/{jid}/orders/{i}/delete"><button class="red" type="submit">Delete</button></form>
  </div>
</div>"""
        )

    body = f"""
{_error_box(session)}
<div class="card">
  <h2>Batch Settings</h2>
  <form method="post" action="/job/{jid}/product" class="row">
    <input type="text" name="product" value="{escape(session.global_product)}" placeholder="Enter product name"/>
    <button type="submit">Apply to All</button>
  </form>
  <div class="row" style="margin-top:8px">{chips}</div>
  <form method="post" action="/job/{jid}/settings" class="row" style="margin-top:14px">
    <span class="muted">Slice Type</span> {modes}
    <input type="date" name="selected_date" value="{escape(session.selected_date)}"/>
    <button class="grey" type="submit">Save</button>
  </form>
</div>
<div class="card">
  <h2>Actions</h2>
  <div class="row">
    <a class="btn green" href="/job/{jid}/preview">Preview &amp; Print</a>
    <form method="post" action="/job/{jid}/orders"><button class="grey" type="submit">Add New Order</button></form>
    <form method="post" action="/job/{jid}/reset"><button class="red" type="submit">Start New Batch</button></form>
  </div>
</div>
<div class="grid">{''.join(cards)}</div>
"""
    return _page("Slice Orders", body)


def preview_page(jid: str, session: Session, page_count: int) -> str:
    imgs = "".join(
        f'<div class="page"><img src="/job/{jid}/pages/{n}.png" alt="Page {n}"/></div>'
        for n in range(1, page_count + 1)
    )
    body = f"""
<div class="card no-print">
  <h2>Print Preview</h2>
  <div class="row">
    <form method="post" action="/job/{jid}/back"><button class="grey" type="submit">Back to List</button></form>
    <a class="btn green" href="/job/{jid}/report.pdf">Save as PDF</a>
    <a class="btn grey" href="/job/{jid}/summary.xlsx">Summary (Excel)</a>
    <button type="button" onclick="window.print()">Print</button>
  </div>
  <div class="muted" style="margin-top:8px">{page_count} page(s), {escape(session.slice_mode)} slices</div>
</div>
{imgs}
"""
    return _page("Print Preview", body)
