from __future__ import annotations

import io
import os
import threading
import time
from html import escape
from pathlib import Path
from typing import List, Optional

import pdfplumber
from dotenv import load_dotenv
from fastapi import FastAPI, File, Form, Request, Response, UploadFile
from fastapi.responses import (
    FileResponse,
    HTMLResponse,
    JSONResponse,
    RedirectResponse,
)

load_dotenv()

from .export import build_summary_xlsx, report_filename
from .orders import (
    OrderValidationError,
    add_order,
    apply_product_to_all,
    delete_order,
    toggle_stock,
    update_order,
)
from .pipeline import (
    JobStore,
    process_job,
    queue_uploads,
    remove_queued_file,
    reset_job,
    start_processing,
)
from .report import Report, build_report, format_issue_date
from .session import (
    EDITABLE,
    PREVIEWING,
    PROCESSING,
    READY,
    InvalidTransition,
    Session,
    begin_preview,
    edit_orders,
    end_preview,
    update_settings,
)
from .slips import build_report_pdf, page_png_bytes, render_page
from .views import orders_page, preview_page, queue_page

JOBS_DIR = Path(os.environ.get("SLICE_JOBS_DIR", "/tmp/slice_jobs"))
store = JobStore(str(JOBS_DIR))

# None -> GeminiExtractor from the environment
EXTRACTOR = None

EXPORT_FAILED_MSG = "Sorry, there was an error creating the file. Please try again."

app = FastAPI()


class JobMissing(LookupError):
    pass


def _launch(target, *args):
    t = threading.Thread(target=target, args=args, daemon=True)
    t.start()
    return t


def _session(jid: str) -> Session:
    try:
        return store.session(jid)
    except KeyError:
        raise JobMissing(jid) from None


def _back(jid: str) -> RedirectResponse:
    return RedirectResponse(url=f"/job/{jid}", status_code=303)


async def _read_uploads(files: List[UploadFile]):
    out = []
    for f in files:
        if not f.filename:
            continue
        out.append((f.filename, f.content_type, await f.read()))
    return out


# ---------------------------
# Error mapping
# ---------------------------
@app.exception_handler(JobMissing)
async def job_missing_handler(request: Request, exc: JobMissing):
    return JSONResponse({"error": "Job not found", "status": "missing"}, status_code=404)


@app.exception_handler(InvalidTransition)
async def transition_handler(request: Request, exc: InvalidTransition):
    return JSONResponse({"error": str(exc)}, status_code=409)


@app.exception_handler(OrderValidationError)
async def order_validation_handler(request: Request, exc: OrderValidationError):
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.exception_handler(IndexError)
async def index_error_handler(request: Request, exc: IndexError):
    return JSONResponse({"error": str(exc)}, status_code=404)


# ---------------------------
# No-cache middleware (status polling + regenerated reports)
# ---------------------------
@app.middleware("http")
async def no_cache_mw(request, call_next):
    resp = await call_next(request)
    resp.headers["Cache-Control"] = "no-store"
    resp.headers["Pragma"] = "no-cache"
    resp.headers["Expires"] = "0"
    return resp


@app.get("/health")
def health():
    return {"ok": True}


@app.head("/health")
def head_health():
    return Response(status_code=200)


@app.head("/")
def head_root():
    return Response(status_code=200)


@app.get("/", response_class=HTMLResponse)
def home():
    return """
<!doctype html>
<html>
<head>
<meta name="viewport" content="width=device-width, initial-scale=1"/>
<title>Slice Orders</title>
<style>
body{
  font-family:system-ui,-apple-system,Segoe UI,Roboto,Arial,sans-serif;
  margin:0;
  background:#0b0f14;
  color:#e8eef6;
}
.page{
  min-height:100vh;
  display:flex;
  flex-direction:column;
  align-items:center;
  justify-content:center;
  gap:18px;
  padding:18px;
}
.card{
  width:100%;
  max-width:780px;
  box-sizing:border-box;
  background:#101826;
  border:1px solid #1c2a3a;
  border-radius:18px;
  padding:32px;
  box-shadow:0 14px 36px rgba(0,0,0,0.35);
}
h1{margin:0 0 18px 0;font-size:24px;text-align:center}
form{display:flex;flex-direction:column;gap:16px}
input[type="file"]{
  width:100%;
  box-sizing:border-box;
  padding:12px;
  border-radius:12px;
  border:1px solid #1c2a3a;
  background:#0f1722;
  color:#e8eef6;
}
input[type="file"]::file-selector-button{
  margin-right:12px;
  padding:10px 14px;
  border-radius:10px;
  border:1px solid #2a3a4d;
  background:#111c2b;
  color:#e8eef6;
  font-weight:600;
}
button{
  width:100%;
  padding:14px;
  border-radius:12px;
  border:0;
  background:#3fa7ff;
  color:#001018;
  font-weight:800;
  font-size:16px;
  cursor:pointer;
}
button.grey{background:#2a3a4d;color:#e8eef6}
.helper{
  text-align:center;
  font-size:12px;
  color:#9aa6b2;
  margin-top:-4px;
}
</style>
</head>
<body>
  <div class="page">
    <div class="card">
      <h1>Upload and Process Files</h1>
      <form action="/upload" method="post" enctype="multipart/form-data">
        <input type="file" name="files" multiple accept="image/*,.pdf,.docx,.accdb,application/pdf" required />
        <button type="submit">Process</button>
        <div class="helper">Photos, scans, PDF or Word order sheets. Several files are merged into one batch.</div>
      </form>
    </div>
    <div class="card">
      <form action="/jobs" method="post">
        <button class="grey" type="submit">Queue files first</button>
      </form>
    </div>
    <div class="card">
      <form action="/extract-text" method="post" enctype="multipart/form-data">
        <input type="file" name="file" accept=".pdf,application/pdf" required />
        <button class="grey" type="submit">Extract PDF text</button>
      </form>
    </div>
  </div>
</body>
</html>
"""


# ---------------------------
# Batch intake
# ---------------------------
@app.post("/upload")
async def upload(files: List[UploadFile] = File(...)):
    uploads = await _read_uploads(files)
    if not uploads:
        return JSONResponse({"error": "No files were uploaded."}, status_code=400)

    jid = store.create()
    queue_uploads(store, jid, uploads)
    start_processing(store, jid)
    _launch(process_job, store, jid, EXTRACTOR)
    return _back(jid)


@app.post("/jobs")
def create_job():
    jid = store.create()
    return _back(jid)


@app.post("/job/{jid}/files")
async def add_files(jid: str, files: List[UploadFile] = File(...)):
    _session(jid)
    uploads = await _read_uploads(files)
    if not uploads:
        return JSONResponse({"error": "No files were uploaded."}, status_code=400)
    queue_uploads(store, jid, uploads)
    return _back(jid)


@app.post("/job/{jid}/files/{idx}/delete")
def delete_file(jid: str, idx: int):
    _session(jid)
    remove_queued_file(store, jid, idx)
    return _back(jid)


@app.get("/job/{jid}/files/{idx}/preview")
def file_preview(jid: str, idx: int):
    s = _session(jid)
    if idx < 0 or idx >= len(s.files):
        return JSONResponse({"error": "No such file."}, status_code=404)
    p = store.previews(jid).path_of(s.files[idx].preview)
    if p is None:
        return JSONResponse({"error": "No preview for this file."}, status_code=404)
    return FileResponse(str(p), media_type="image/png")


@app.post("/job/{jid}/process")
def process(jid: str):
    _session(jid)
    start_processing(store, jid)
    _launch(process_job, store, jid, EXTRACTOR)
    return _back(jid)


@app.post("/job/{jid}/reset")
def reset(jid: str):
    _session(jid)
    reset_job(store, jid)
    return _back(jid)


# ---------------------------
# Status endpoint for polling (no refresh needed)
# ---------------------------
@app.get("/job/{jid}/status")
def job_status(jid: str):
    j = store.get(jid)
    if j.get("status") == "missing":
        return JSONResponse({"status": "missing"}, status_code=404)

    s = Session.from_dict(j.get("session"))
    return {
        "status": s.stage,
        "error": s.error,
        "progress": j.get("progress") or {},
        "files": len(s.files),
        "orders": len(s.data.orders),
        "job_url": f"/job/{jid}",
        "ts": int(time.time()),
    }


@app.get("/job/{jid}", response_class=HTMLResponse)
def job_page(jid: str):
    """
    HTML for whatever stage the session is in. The processing page carries
    JS braces, so it is a plain template + .replace(), not an f-string.
    """
    s = _session(jid)
    if s.stage == PREVIEWING:
        return RedirectResponse(url=f"/job/{jid}/preview", status_code=303)
    if s.stage == READY:
        return HTMLResponse(orders_page(jid, s))
    if s.stage != PROCESSING:
        return HTMLResponse(queue_page(jid, s))

    prog = store.progress(jid)
    pct = max(0, min(100, int(prog.get("pct", 0) or 0)))
    status_line = escape(str(prog.get("msg") or "Working…"))

    html = """<!doctype html><html>
<head>
<meta name="viewport" content="width=device-width, initial-scale=1"/>
<title>Processing…</title>
<style>
body{font-family:system-ui,-apple-system,Segoe UI,Roboto,Arial,sans-serif;margin:0;min-height:100vh;display:flex;align-items:center;justify-content:center;background:#0b0f14;color:#e8eef6;padding:24px}
.card{width:min(540px,100%);background:#101826;border:1px solid #1c2a3a;border-radius:18px;padding:24px 22px;box-shadow:0 18px 40px rgba(5,9,14,.45)}
.title{font-size:24px;font-weight:800;letter-spacing:.2px}
.muted{color:#97a7bd}
.status{margin-top:14px;font-size:15px;font-weight:600}
.subtle{margin-top:6px;font-size:13px}
.bar{margin-top:16px;height:10px;background:#0f1722;border:1px solid #1c2a3a;border-radius:999px;overflow:hidden}
.fill{height:100%;background:linear-gradient(90deg,#3fa7ff,#66b6ff);transition:width .25s ease}
</style>
</head>
<body>
  <div class="card">
    <div class="title">Processing…</div>

    <div class="bar">
      <div class="fill" id="fill" style="width: __PCT__%"></div>
    </div>

    <div class="status" id="statusLine">__STATUS_LINE__</div>
    <div class="muted subtle">This page updates automatically.</div>
  </div>

<script>
(function(){
  var jid = "__JID__";
  var fill = document.getElementById("fill");
  var statusLine = document.getElementById("statusLine");

  function setPct(p){
    p = Math.max(0, Math.min(100, p|0));
    fill.style.width = p + "%";
  }

  async function tick(){
    try{
      var r = await fetch("/job/" + jid + "/status", { cache: "no-store" });
      if(!r.ok) return;
      var s = await r.json();

      if(s.progress && s.progress.msg){
        statusLine.textContent = s.progress.msg;
      }
      var pct = 0;
      if(s.progress && typeof s.progress.pct !== "undefined") pct = parseInt(s.progress.pct, 10) || 0;
      setPct(pct);

      if(s.status !== "processing"){
        clearInterval(timer);
        window.location.replace(s.job_url + "?v=" + Date.now());
      }
    }catch(e){
      // Ignore transient network errors; next poll will recover.
    }
  }

  tick();
  var timer = setInterval(tick, 1000);
})();
</script>
</body>
</html>
"""

    html = (
        html.replace("__JID__", jid)
            .replace("__PCT__", str(pct))
            .replace("__STATUS_LINE__", status_line)
    )
    return HTMLResponse(html)


# ---------------------------
# Order editing
# ---------------------------
@app.get("/job/{jid}/orders")
def orders_json(jid: str):
    s = _session(jid)
    return {
        "status": s.stage,
        "error": s.error,
        "data": s.data.to_dict(),
        "global_product": s.global_product,
        "products": s.products,
        "slice_mode": s.slice_mode,
        "selected_date": s.selected_date,
    }


@app.post("/job/{jid}/orders")
def add_new_order(jid: str):
    _session(jid)
    store.update(jid, lambda s: edit_orders(s, add_order(s.data, s.global_product)))
    return _back(jid)


@app.post("/job/{jid}/orders/{idx}")
def edit_order(jid: str, idx: int, route: str = Form(""), product: str = Form(""), trays: str = Form("")):
    _session(jid)
    store.update(jid, lambda s: edit_orders(s, update_order(s.data, idx, route, product, trays)))
    return _back(jid)


@app.post("/job/{jid}/orders/{idx}/delete")
def remove_order(jid: str, idx: int):
    _session(jid)
    store.update(jid, lambda s: edit_orders(s, delete_order(s.data, idx)))
    return _back(jid)


@app.post("/job/{jid}/orders/{idx}/stock")
def stock_toggle(jid: str, idx: int):
    _session(jid)
    store.update(jid, lambda s: edit_orders(s, toggle_stock(s.data, idx)))
    return _back(jid)


@app.post("/job/{jid}/product")
def product_to_all(jid: str, product: str = Form("")):
    _session(jid)
    store.update(
        jid,
        lambda s: update_settings(edit_orders(s, apply_product_to_all(s.data, product)), global_product=product.strip()),
    )
    return _back(jid)


@app.post("/job/{jid}/settings")
def settings(
    jid: str,
    slice_mode: Optional[str] = Form(None),
    selected_date: Optional[str] = Form(None),
    global_product: Optional[str] = Form(None),
):
    _session(jid)
    store.update(
        jid,
        lambda s: update_settings(s, slice_mode=slice_mode, selected_date=selected_date or None, global_product=global_product),
    )
    return _back(jid)


# ---------------------------
# Preview + export
# ---------------------------
def _report_for(s: Session) -> Report:
    if s.stage not in EDITABLE or not s.has_orders:
        raise InvalidTransition("There are no orders to print yet.")
    return build_report(s.data, s.slice_mode, format_issue_date(s.selected_date))


@app.get("/job/{jid}/preview", response_class=HTMLResponse)
def preview(jid: str):
    _session(jid)
    s = store.update(jid, begin_preview)
    return HTMLResponse(preview_page(jid, s, _report_for(s).page_count))


@app.post("/job/{jid}/back")
def back_to_list(jid: str):
    _session(jid)
    store.update(jid, end_preview)
    return _back(jid)


@app.get("/job/{jid}/pages/{n}.png")
def page_png(jid: str, n: int):
    report = _report_for(_session(jid))
    return Response(page_png_bytes(render_page(report, n)), media_type="image/png")


@app.get("/job/{jid}/report.pdf")
def report_pdf(jid: str):
    s = _session(jid)
    report = _report_for(s)
    name = report_filename(s.selected_date, "pdf")
    out = store.path(jid) / "out" / name
    try:
        build_report_pdf(report, str(out))
    except Exception as e:
        print(f"[report] {jid}: PDF export failed: {e!r}", flush=True)
        return JSONResponse({"error": EXPORT_FAILED_MSG}, status_code=500)
    return FileResponse(str(out), filename=name, media_type="application/pdf")


@app.get("/job/{jid}/summary.xlsx")
def summary_xlsx(jid: str):
    s = _session(jid)
    report = _report_for(s)
    name = report_filename(s.selected_date, "xlsx")
    out = store.path(jid) / "out" / name
    try:
        build_summary_xlsx(report, str(out))
    except Exception as e:
        print(f"[report] {jid}: workbook export failed: {e!r}", flush=True)
        return JSONResponse({"error": EXPORT_FAILED_MSG}, status_code=500)
    return FileResponse(
        str(out),
        filename=name,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )


# ---------------------------
# PDF text tool
# ---------------------------
@app.post("/extract-text")
async def extract_text(file: UploadFile = File(...)):
    if not (file.filename or "").lower().endswith(".pdf"):
        return JSONResponse({"error": "Please select a PDF file"}, status_code=400)
    blob = await file.read()
    try:
        with pdfplumber.open(io.BytesIO(blob)) as pdf:
            texts = [(p.extract_text() or "") for p in pdf.pages]
    except Exception as e:
        print(f"[extract] PDF text extraction failed for {file.filename}: {e!r}", flush=True)
        return JSONResponse({"error": "Failed to extract text from PDF"}, status_code=400)
    return {"name": file.filename, "pages": len(texts), "text": "\n\n".join(texts).strip()}
