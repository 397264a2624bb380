from __future__ import annotations

import json
import mimetypes
import os
import re
import shutil
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .extraction import EXTRACTION_FAILURE, GENERIC_FAILURE_MSG, Err, ExtractionResult, GeminiExtractor, Ok, SourceFile
from .orders import Order, OrderData, aggregate_orders, clean_product_name
from .previews import PreviewRegistry
from .session import (
    PROCESSING,
    InvalidTransition,
    QueuedFile,
    Session,
    begin_processing,
    fail_batch,
    finish_batch,
    queue_files,
    remove_file,
    replaced_files,
    reset,
)

EXTRACT_WORKERS = int(os.environ.get("EXTRACT_WORKERS", "8"))

SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")

Extractor = Callable[[SourceFile], ExtractionResult]


def _clamp_pct(x: int) -> int:
    try:
        x = int(x)
    except Exception:
        x = 0
    return max(0, min(100, x))


def guess_media_type(name: str, declared: Optional[str] = None) -> str:
    if declared and declared != "application/octet-stream":
        return declared
    guessed, _ = mimetypes.guess_type(name or "")
    return guessed or declared or "application/octet-stream"


# =========================
# BATCH: SCATTER / GATHER
# =========================
@dataclass
class Settled:
    source: SourceFile
    result: ExtractionResult


@dataclass
class BatchOutcome:
    data: Optional[OrderData]
    errors: List[str] = field(default_factory=list)

    @property
    def no_data(self) -> bool:
        return self.data is None and not self.errors


def _settle(extractor: Extractor, source: SourceFile) -> ExtractionResult:
    try:
        return extractor(source)
    except Exception as exc:
        print(f"[batch] {source.name}: extractor raised {exc!r}", flush=True)
        return Err(EXTRACTION_FAILURE, str(exc) or GENERIC_FAILURE_MSG)


def extract_batch(
    sources: List[SourceFile],
    extractor: Extractor,
    progress_cb: Optional[Callable[..., None]] = None,
    max_workers: Optional[int] = None,
) -> List[Settled]:
    """
    Runs one extraction per file concurrently and waits for all of them.
    Results come back in file order; a failure only affects its own file.
    """
    if not sources:
        return []

    workers = max(1, min(max_workers or EXTRACT_WORKERS, len(sources)))
    results: List[Optional[ExtractionResult]] = [None] * len(sources)
    total = len(sources)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="extract") as pool:
        futures = {pool.submit(_settle, extractor, src): i for i, src in enumerate(sources)}
        done = 0
        for fut in as_completed(futures):
            i = futures[fut]
            results[i] = fut.result()
            done += 1
            if progress_cb:
                progress_cb(
                    stage="extract",
                    msg=f"Processing file {done} of {total}",
                    done=done,
                    total=total,
                    pct=_clamp_pct(done * 100 // total),
                )

    return [Settled(source=src, result=res) for src, res in zip(sources, results)]


def normalize_extracted(result: Ok) -> List[Order]:
    return [
        Order(route=o.route, product=clean_product_name(o.product), trays=int(o.trays), in_stock=False)
        for o in result.payload.orders
    ]


def merge_batch(settled: List[Settled]) -> BatchOutcome:
    all_orders: List[Order] = []
    found_date = ""
    errors: List[str] = []

    for item in settled:
        res = item.result
        if isinstance(res, Ok):
            orders = normalize_extracted(res)
            if not orders:
                print(f"[batch] {item.source.name}: no orders in response", flush=True)
                continue
            all_orders.extend(orders)
            if res.payload.issue_date and not found_date:
                found_date = res.payload.issue_date
        else:
            print(f"[batch] Error processing file {item.source.name}: [{res.kind}] {res.reason}", flush=True)
            errors.append(f"Error with {item.source.name}: {res.reason}")

    if not all_orders:
        return BatchOutcome(data=None, errors=errors)
    return BatchOutcome(data=OrderData(issue_date=found_date, orders=aggregate_orders(all_orders)), errors=errors)


# =========================
# JOB STORE
# =========================
class JobStore:
    """
    One folder per work session; job.json holds the session and progress so
    status survives restarts. uploads/ and previews/ sit next to it.
    """
    def __init__(self, root_dir: str):
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._jobs: Dict[str, Dict[str, Any]] = {}

    def _job_dir(self, jid: str) -> Path:
        return self.root / jid

    def _job_json(self, jid: str) -> Path:
        return self._job_dir(jid) / "job.json"

    def _write(self, jid: str, payload: Dict[str, Any]) -> None:
        d = self._job_dir(jid)
        d.mkdir(parents=True, exist_ok=True)
        tmp = self._job_json(jid).with_suffix(".json.tmp")
        tmp.write_text(json.dumps(payload), encoding="utf-8")
        tmp.replace(self._job_json(jid))
        self._jobs[jid] = payload

    def create(self) -> str:
        jid = uuid.uuid4().hex[:10]
        payload = {"session": Session().to_dict(), "progress": {"pct": 0, "stage": "idle", "msg": "Waiting for files"}}
        with self._lock:
            self._write(jid, payload)
        return jid

    def path(self, jid: str) -> Path:
        return self._job_dir(jid)

    def uploads_dir(self, jid: str) -> Path:
        return self._job_dir(jid) / "uploads"

    def previews(self, jid: str) -> PreviewRegistry:
        return PreviewRegistry(self._job_dir(jid) / "previews")

    def exists(self, jid: str) -> bool:
        return self.get(jid).get("status") != "missing"

    def get(self, jid: str) -> Dict[str, Any]:
        with self._lock:
            if jid in self._jobs:
                return json.loads(json.dumps(self._jobs[jid]))

            jfile = self._job_json(jid)
            if not jfile.exists():
                return {"status": "missing"}
            try:
                payload = json.loads(jfile.read_text(encoding="utf-8"))
            except Exception:
                payload = {"session": Session(error="Corrupt job.json").to_dict(), "progress": {}}
            self._jobs[jid] = payload
            return json.loads(json.dumps(payload))

    def session(self, jid: str) -> Session:
        job = self.get(jid)
        if job.get("status") == "missing":
            raise KeyError(jid)
        return Session.from_dict(job.get("session"))

    def save(self, jid: str, session: Session) -> Session:
        with self._lock:
            payload = self.get(jid)
            payload.pop("status", None)
            payload["session"] = session.to_dict()
            self._write(jid, payload)
        return session

    def update(self, jid: str, fn: Callable[[Session], Session]) -> Session:
        """Apply a session transition and persist it as one step."""
        with self._lock:
            return self.save(jid, fn(self.session(jid)))

    def progress(self, jid: str) -> Dict[str, Any]:
        return self.get(jid).get("progress") or {}

    def set_progress(self, jid: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            job = self.get(jid)
            merged = dict(job.get("progress") or {})
            merged.update(payload)
            if "pct" in merged:
                merged["pct"] = _clamp_pct(merged["pct"])
            job["progress"] = merged
            self._write(jid, job)


# =========================
# FILE QUEUE
# =========================
def _safe_name(name: str) -> str:
    return SAFE_NAME_RE.sub("_", Path(name or "upload").name).strip("._") or "upload"


def queue_uploads(store: JobStore, jid: str, uploads: List[Tuple[str, Optional[str], bytes]]) -> Session:
    """
    Stores uploads (name, declared media type, bytes) and queues them.
    Previews made here are released again if anything fails before the
    session is saved; previews of replaced files are released after.
    """
    up_dir = store.uploads_dir(jid)
    up_dir.mkdir(parents=True, exist_ok=True)
    previews = store.previews(jid)
    written: List[Path] = []

    try:
        with previews.scoped() as acquired:
            queued: List[QueuedFile] = []
            for name, declared, blob in uploads:
                media_type = guess_media_type(name, declared)
                dest = up_dir / f"{uuid.uuid4().hex[:8]}_{_safe_name(name)}"
                dest.write_bytes(blob)
                written.append(dest)
                handle = previews.acquire(dest, media_type)
                acquired.append(handle)
                queued.append(QueuedFile(name=name, media_type=media_type, path=str(dest), preview=handle))

            seen: List[Session] = []

            def _queue(s: Session) -> Session:
                seen.append(s)
                return queue_files(s, queued)

            after = store.update(jid, _queue)
            before = seen[-1]
    except BaseException:
        for p in written:
            p.unlink(missing_ok=True)
        raise

    for old in replaced_files(before, after):
        previews.release(old.preview)
        Path(old.path).unlink(missing_ok=True)
    return after


def remove_queued_file(store: JobStore, jid: str, index: int) -> Session:
    seen: List[Session] = []

    def _remove(s: Session) -> Session:
        seen.append(s)
        return remove_file(s, index)

    after = store.update(jid, _remove)
    gone = seen[-1].files[index]
    store.previews(jid).release(gone.preview)
    Path(gone.path).unlink(missing_ok=True)
    return after


def reset_job(store: JobStore, jid: str) -> Session:
    seen: List[Session] = []

    def _reset(s: Session) -> Session:
        if s.stage == PROCESSING:
            raise InvalidTransition("Wait for the current batch to finish before starting a new one.")
        seen.append(s)
        return reset(s)

    after = store.update(jid, _reset)
    before = seen[-1]
    released = store.previews(jid).release_all(f.preview for f in before.files)
    shutil.rmtree(store.uploads_dir(jid), ignore_errors=True)
    print(f"[batch] {jid}: reset, released {released} preview(s)", flush=True)
    store.set_progress(jid, {"stage": "idle", "msg": "Waiting for files", "pct": 0})
    return after


# =========================
# WORKER
# =========================
def start_processing(store: JobStore, jid: str) -> Session:
    session = store.update(jid, begin_processing)
    store.set_progress(jid, {"stage": "extract", "msg": "Processing files…", "done": 0, "total": len(session.files), "pct": 0})
    return session


def process_job(store: JobStore, jid: str, extractor: Optional[Extractor] = None) -> None:
    """Worker body for one batch. Expects the session already in processing."""
    try:
        extractor = extractor or GeminiExtractor()
        session = store.session(jid)
        sources = [SourceFile(name=f.name, media_type=f.media_type, path=Path(f.path)) for f in session.files]

        def cb(**payload):
            store.set_progress(jid, payload)

        settled = extract_batch(sources, extractor, progress_cb=cb)

        cb(stage="aggregate", msg="Merging orders…")
        outcome = merge_batch(settled)
        session = store.update(jid, lambda s: finish_batch(s, outcome.data, outcome.errors))

        print(
            f"[batch] {jid}: {len(sources)} file(s), {len(session.data.orders)} order(s), {len(outcome.errors)} error(s)",
            flush=True,
        )
        store.set_progress(jid, {"stage": "done", "msg": "Done", "pct": 100})
    except Exception as e:
        print(f"[batch] {jid}: failed: {e!r}", flush=True)
        store.update(jid, lambda s: fail_batch(s, str(e)) if s.stage == PROCESSING else s)
        store.set_progress(jid, {"stage": "error", "msg": "Error"})
