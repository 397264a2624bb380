import threading
import time
from pathlib import Path

import pytest
from conftest import FakeExtractor, ok, png_bytes

from slice_orders.extraction import EMPTY_RESULT, Err, SourceFile
from slice_orders.pipeline import (
    extract_batch,
    guess_media_type,
    merge_batch,
    process_job,
    queue_uploads,
    remove_queued_file,
    reset_job,
    start_processing,
)
from slice_orders.session import IDLE, PROCESSING, QUEUED, READY, InvalidTransition, NO_DATA_MSG


def _sources(tmp_path, names):
    out = []
    for n in names:
        p = tmp_path / n
        p.write_bytes(b"x")
        out.append(SourceFile(name=n, media_type="image/png", path=p))
    return out


def test_guess_media_type():
    assert guess_media_type("a.pdf", None) == "application/pdf"
    assert guess_media_type("a.pdf", "application/octet-stream") == "application/pdf"
    assert guess_media_type("a.jpg", "image/heic") == "image/heic"
    assert guess_media_type("noext", None) == "application/octet-stream"


def test_extract_batch_keeps_file_order_and_reports_progress(tmp_path):
    class SlowFirst(FakeExtractor):
        def __call__(self, source):
            if source.name == "a.png":
                time.sleep(0.05)
            return super().__call__(source)

    ex = SlowFirst({"a.png": ok([{"route": "A", "product": "P", "trays": 1}]), "b.png": ok([])})
    seen = []
    settled = extract_batch(_sources(tmp_path, ["a.png", "b.png"]), ex, progress_cb=lambda **kw: seen.append(kw))
    assert [s.source.name for s in settled] == ["a.png", "b.png"]
    assert seen[-1]["done"] == 2 and seen[-1]["pct"] == 100


def test_extract_batch_runs_concurrently(tmp_path):
    barrier = threading.Barrier(3, timeout=5)

    def ex(source):
        barrier.wait()
        return ok([])

    settled = extract_batch(_sources(tmp_path, ["1.png", "2.png", "3.png"]), ex, max_workers=3)
    assert len(settled) == 3


def test_extractor_exception_only_affects_its_file(tmp_path):
    ex = FakeExtractor({"a.png": RuntimeError("boom"), "b.png": ok([{"route": "B", "product": "P", "trays": 2}])})
    outcome = merge_batch(extract_batch(_sources(tmp_path, ["a.png", "b.png"]), ex))
    assert outcome.errors == ["Error with a.png: boom"]
    assert [o.route for o in outcome.data.orders] == ["B"]


def test_merge_batch_cleans_aggregates_and_takes_first_date(tmp_path):
    ex = FakeExtractor(
        {
            "a.png": ok([{"route": "Athlone", "product": 'B441 4" Regular Tray 60', "trays": 10}], ""),
            "b.png": ok([{"route": "ATHLONE", "product": '4" Regular', "trays": 5}], "TUE 14 MAY"),
            "c.png": ok([{"route": "Cork", "product": "Brown", "trays": 1}], "WED 15 MAY"),
        }
    )
    outcome = merge_batch(extract_batch(_sources(tmp_path, ["a.png", "b.png", "c.png"]), ex))
    assert outcome.errors == []
    assert outcome.data.issue_date == "TUE 14 MAY"
    assert [(o.route, o.product, o.trays) for o in outcome.data.orders] == [
        ("Athlone", '4" Regular', 15),
        ("Cork", "Brown", 1),
    ]


def test_merge_batch_no_data(tmp_path):
    outcome = merge_batch(extract_batch(_sources(tmp_path, ["a.png"]), FakeExtractor({"a.png": ok([])})))
    assert outcome.data is None
    assert outcome.no_data


def test_merge_batch_collects_error_reasons(tmp_path):
    ex = FakeExtractor({"a.png": Err(EMPTY_RESULT, "API returned an empty response.")})
    outcome = merge_batch(extract_batch(_sources(tmp_path, ["a.png"]), ex))
    assert outcome.errors == ["Error with a.png: API returned an empty response."]
    assert not outcome.no_data


# ---------------------------
# JobStore + queue
# ---------------------------
def test_store_roundtrip(store):
    jid = store.create()
    assert store.exists(jid)
    assert store.session(jid).stage == IDLE
    assert (store.path(jid) / "job.json").exists()
    assert store.get("nope") == {"status": "missing"}
    with pytest.raises(KeyError):
        store.session("nope")


def test_store_reloads_from_disk(store):
    jid = store.create()
    store.set_progress(jid, {"pct": 250, "msg": "x"})
    fresh = type(store)(str(store.root))
    assert fresh.progress(jid)["pct"] == 100


def test_queue_uploads_writes_files_and_previews(store, image_upload):
    jid = store.create()
    s = queue_uploads(store, jid, [("a.png", "image/png", image_upload), ("b.docx", None, b"PK")])
    assert s.stage == QUEUED
    assert [f.name for f in s.files] == ["a.png", "b.docx"]
    assert all(Path(f.path).exists() for f in s.files)
    assert s.files[0].preview is not None
    assert s.files[1].preview is None
    assert store.previews(jid).live() == [s.files[0].preview]


def test_queue_same_name_replaces_and_releases_preview(store, image_upload):
    jid = store.create()
    first = queue_uploads(store, jid, [("a.png", "image/png", image_upload)]).files[0]
    second = queue_uploads(store, jid, [("a.png", "image/png", png_bytes(color=(0, 0, 0)))]).files
    assert len(second) == 1
    assert second[0].path != first.path
    assert not Path(first.path).exists()
    assert store.previews(jid).live() == [second[0].preview]


def test_queue_failure_releases_previews(store, image_upload):
    jid = store.create()
    start = queue_uploads(store, jid, [("a.png", "image/png", image_upload)])
    start_processing(store, jid)
    with pytest.raises(InvalidTransition):
        queue_uploads(store, jid, [("b.png", "image/png", image_upload)])
    assert store.previews(jid).live() == [start.files[0].preview]
    assert len(list(store.uploads_dir(jid).iterdir())) == 1


def test_remove_queued_file(store, image_upload):
    jid = store.create()
    s = queue_uploads(store, jid, [("a.png", "image/png", image_upload)])
    after = remove_queued_file(store, jid, 0)
    assert after.stage == IDLE and after.files == []
    assert store.previews(jid).live() == []
    assert not Path(s.files[0].path).exists()
    with pytest.raises(InvalidTransition):
        remove_queued_file(store, jid, 0)


def test_reset_job_releases_everything(store, image_upload):
    jid = store.create()
    queue_uploads(store, jid, [("a.png", "image/png", image_upload), ("b.png", "image/png", image_upload)])
    s = reset_job(store, jid)
    assert s.stage == IDLE
    assert store.previews(jid).live() == []
    assert not store.uploads_dir(jid).exists()


def test_reset_refused_while_processing(store, image_upload):
    jid = store.create()
    queue_uploads(store, jid, [("a.png", "image/png", image_upload)])
    start_processing(store, jid)
    with pytest.raises(InvalidTransition):
        reset_job(store, jid)
    assert store.session(jid).stage == PROCESSING


# ---------------------------
# Worker
# ---------------------------
def test_process_job_ready(store, image_upload):
    jid = store.create()
    queue_uploads(store, jid, [("a.png", "image/png", image_upload), ("b.png", "image/png", image_upload)])
    start_processing(store, jid)
    ex = FakeExtractor(
        {
            "a.png": ok([{"route": "Cork", "product": "Brown", "trays": 4}], "TUE 14 MAY"),
            "b.png": Err(EMPTY_RESULT, "API returned an empty response."),
        }
    )
    process_job(store, jid, ex)
    s = store.session(jid)
    assert s.stage == READY
    assert s.global_product == "Brown"
    assert s.error == "Error with b.png: API returned an empty response."
    assert store.progress(jid)["pct"] == 100


def test_process_job_no_data_goes_back_to_queue(store, image_upload):
    jid = store.create()
    queue_uploads(store, jid, [("a.png", "image/png", image_upload)])
    start_processing(store, jid)
    process_job(store, jid, FakeExtractor({"a.png": ok([])}))
    s = store.session(jid)
    assert s.stage == QUEUED
    assert s.error == NO_DATA_MSG
    assert len(s.files) == 1


def test_process_job_unexpected_failure(store, image_upload, monkeypatch):
    jid = store.create()
    queue_uploads(store, jid, [("a.png", "image/png", image_upload)])
    start_processing(store, jid)

    def explode(settled):
        raise RuntimeError("merge exploded")

    monkeypatch.setattr("slice_orders.pipeline.merge_batch", explode)
    process_job(store, jid, FakeExtractor({"a.png": ok([])}))
    s = store.session(jid)
    assert s.stage == QUEUED
    assert s.error == "merge exploded"
    assert store.progress(jid)["stage"] == "error"
