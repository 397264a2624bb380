import pytest

from slice_orders.orders import Order, OrderData
from slice_orders.report import UnknownSliceMode
from slice_orders.session import (
    IDLE,
    NO_DATA_MSG,
    PREVIEWING,
    PROCESSING,
    QUEUED,
    READY,
    InvalidTransition,
    QueuedFile,
    Session,
    begin_preview,
    begin_processing,
    edit_orders,
    end_preview,
    fail_batch,
    finish_batch,
    queue_files,
    remove_file,
    replaced_files,
    reset,
    update_settings,
)


def qf(name, path=None):
    return QueuedFile(name=name, media_type="image/png", path=path or f"/tmp/{name}")


def _ready(sample_data):
    s = begin_processing(queue_files(Session(), [qf("a.png")]))
    return finish_batch(s, sample_data, [])


def test_queue_and_replace_same_name():
    s = queue_files(Session(error="old"), [qf("a.png", "/u/1"), qf("b.png")])
    assert s.stage == QUEUED and s.error is None
    s2 = queue_files(s, [qf("a.png", "/u/2")])
    assert [f.name for f in s2.files] == ["b.png", "a.png"]
    assert replaced_files(s, s2) == [qf("a.png", "/u/1")]


def test_queue_refused_while_processing():
    s = begin_processing(queue_files(Session(), [qf("a.png")]))
    assert s.stage == PROCESSING
    with pytest.raises(InvalidTransition):
        queue_files(s, [qf("b.png")])


def test_remove_last_file_goes_idle():
    s = queue_files(Session(), [qf("a.png")])
    assert remove_file(s, 0).stage == IDLE
    with pytest.raises(IndexError):
        remove_file(s, 3)


def test_begin_processing_needs_queue():
    with pytest.raises(InvalidTransition):
        begin_processing(Session())


def test_finish_batch_ready_sets_global_product(sample_data):
    s = _ready(sample_data)
    assert s.stage == READY
    assert s.global_product == '4" Regular'
    assert s.products == ['4" Regular', "Sliced Pan"]


def test_finish_batch_without_orders():
    s = begin_processing(queue_files(Session(), [qf("a.png")]))
    empty = finish_batch(s, None, [])
    assert empty.stage == QUEUED and empty.error == NO_DATA_MSG
    failed = finish_batch(s, None, ["Error with a.png: boom", "Error with b.png: bang"])
    assert failed.error == "Error with a.png: boom\nError with b.png: bang"
    assert fail_batch(s, "crash").error == "crash"


def test_preview_cycle(sample_data):
    s = begin_preview(_ready(sample_data))
    assert s.stage == PREVIEWING
    assert edit_orders(s, OrderData(orders=[Order("A", "P", 1)])).stage == PREVIEWING
    assert end_preview(s).stage == READY


def test_preview_needs_orders(sample_data):
    s = edit_orders(_ready(sample_data), OrderData())
    with pytest.raises(InvalidTransition):
        begin_preview(s)


def test_edits_need_ready():
    with pytest.raises(InvalidTransition):
        edit_orders(Session(), OrderData())


def test_update_settings_validates():
    s = update_settings(Session(), slice_mode="single", selected_date="2024-05-14", global_product="Brown")
    assert (s.slice_mode, s.selected_date, s.global_product) == ("single", "2024-05-14", "Brown")
    with pytest.raises(UnknownSliceMode):
        update_settings(s, slice_mode="quad")
    with pytest.raises(ValueError):
        update_settings(s, selected_date="yesterday")


def test_reset_keeps_preferences(sample_data):
    s = update_settings(_ready(sample_data), slice_mode="single", selected_date="2024-05-14")
    fresh = reset(s)
    assert fresh.stage == IDLE and fresh.files == [] and not fresh.has_orders
    assert fresh.slice_mode == "single" and fresh.selected_date == "2024-05-14"


def test_session_dict_roundtrip(sample_data):
    s = _ready(sample_data)
    assert Session.from_dict(s.to_dict()) == s
    assert Session.from_dict({"stage": "bogus"}).stage == IDLE
