import json

import pdfplumber
import pytest

from tools.build_report import load_order_data, main


def _write(path, payload):
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


def test_cli_writes_pdf_and_xlsx(tmp_path, sample_data):
    src = _write(tmp_path / "orders.json", sample_data.to_dict())
    out = tmp_path / "report.pdf"
    xlsx = tmp_path / "summary.xlsx"
    assert main(["--json", src, "--out", str(out), "--mode", "single", "--date", "2024-05-14", "--xlsx", str(xlsx)]) == 0
    with pdfplumber.open(str(out)) as pdf:
        # summary + ATHLONE x2 + finnerty x1
        assert len(pdf.pages) == 4
    assert xlsx.exists()


def test_load_from_job_json(tmp_path, sample_data):
    src = _write(tmp_path / "job.json", {"session": {"data": sample_data.to_dict()}, "progress": {}})
    assert load_order_data(src) == sample_data


def test_load_with_aggregate(tmp_path):
    raw = {"issueDate": "", "orders": [{"route": "A", "product": "P", "trays": 1}, {"route": "a", "product": "p", "trays": 2}]}
    data = load_order_data(_write(tmp_path / "o.json", raw), aggregate=True)
    assert [o.trays for o in data.orders] == [3]


def test_cli_rejects_empty(tmp_path):
    src = _write(tmp_path / "empty.json", {"issueDate": "", "orders": []})
    with pytest.raises(SystemExit):
        main(["--json", src, "--out", str(tmp_path / "x.pdf")])
