import io
import sys
from pathlib import Path
from typing import Dict, Optional

import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from slice_orders.extraction import (  # noqa: E402
    EXTRACTION_FAILURE,
    Err,
    ExtractionPayload,
    Ok,
    SourceFile,
)
from slice_orders.orders import Order, OrderData  # noqa: E402
from slice_orders.pipeline import JobStore  # noqa: E402


def ok(orders, issue_date=""):
    return Ok(ExtractionPayload.model_validate({"issueDate": issue_date, "orders": orders}))


class FakeExtractor:
    """Returns canned results by file name; unknown names fail."""

    def __init__(self, results: Optional[Dict[str, object]] = None):
        self.results = dict(results or {})
        self.calls = []

    def __call__(self, source: SourceFile):
        self.calls.append(source.name)
        res = self.results.get(source.name)
        if isinstance(res, Exception):
            raise res
        if res is None:
            return Err(EXTRACTION_FAILURE, "no canned result")
        return res


def png_bytes(size=(64, 48), color=(200, 120, 40)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def store(tmp_path):
    return JobStore(str(tmp_path / "jobs"))


@pytest.fixture
def sample_data():
    return OrderData(
        issue_date="TUE 14 MAY",
        orders=[
            Order("ATHLONE", '4" Regular', 130),
            Order("finnerty", '4" Regular', 12),
            Order("IN STOCK", "Sliced Pan", 9),
            Order("Galway", "Sliced Pan", 40, in_stock=True),
        ],
    )


@pytest.fixture
def image_upload():
    return png_bytes()
