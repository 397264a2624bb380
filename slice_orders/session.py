from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, List, Optional

from .orders import OrderData, unique_products
from .report import DEFAULT_SLICE_MODE, parse_selected_date, slice_capacity

IDLE = "idle"
QUEUED = "queued"
PROCESSING = "processing"
READY = "ready"
PREVIEWING = "previewing"

STAGES = (IDLE, QUEUED, PROCESSING, READY, PREVIEWING)
EDITABLE = (READY, PREVIEWING)

NO_DATA_MSG = "Could not extract any order data from the provided documents."


class InvalidTransition(RuntimeError):
    pass


@dataclass(frozen=True)
class QueuedFile:
    name: str
    media_type: str
    path: str
    preview: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "media_type": self.media_type, "path": self.path, "preview": self.preview}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "QueuedFile":
        return cls(
            name=str(raw.get("name", "")),
            media_type=str(raw.get("media_type", "")),
            path=str(raw.get("path", "")),
            preview=raw.get("preview"),
        )


@dataclass
class Session:
    stage: str = IDLE
    files: List[QueuedFile] = field(default_factory=list)
    data: OrderData = field(default_factory=OrderData)
    error: Optional[str] = None
    global_product: str = ""
    slice_mode: str = DEFAULT_SLICE_MODE
    selected_date: str = field(default_factory=lambda: date.today().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "files": [f.to_dict() for f in self.files],
            "data": self.data.to_dict(),
            "error": self.error,
            "global_product": self.global_product,
            "slice_mode": self.slice_mode,
            "selected_date": self.selected_date,
        }

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "Session":
        raw = raw or {}
        stage = raw.get("stage") or IDLE
        return cls(
            stage=stage if stage in STAGES else IDLE,
            files=[QueuedFile.from_dict(f) for f in (raw.get("files") or [])],
            data=OrderData.from_dict(raw.get("data")),
            error=raw.get("error"),
            global_product=str(raw.get("global_product") or ""),
            slice_mode=str(raw.get("slice_mode") or DEFAULT_SLICE_MODE),
            selected_date=str(raw.get("selected_date") or date.today().isoformat()),
        )

    @property
    def has_orders(self) -> bool:
        return bool(self.data.orders)

    @property
    def products(self) -> List[str]:
        return unique_products(self.data)


def _require(session: Session, *stages: str) -> None:
    if session.stage not in stages:
        raise InvalidTransition(f"Not allowed while {session.stage} (needs {' or '.join(stages)}).")


# =========================
# TRANSITIONS
# =========================
def queue_files(session: Session, files: List[QueuedFile]) -> Session:
    """
    Adds files to the queue. A file with the same name replaces the queued
    one; the caller gets the replaced entries back via replaced_files().
    """
    _require(session, IDLE, QUEUED)
    if not files:
        raise InvalidTransition("No files to queue.")
    incoming = {f.name for f in files}
    kept = [f for f in session.files if f.name not in incoming]
    return replace(session, stage=QUEUED, files=kept + list(files), error=None)


def replaced_files(before: Session, after: Session) -> List[QueuedFile]:
    still_there = {f.path for f in after.files}
    return [f for f in before.files if f.path not in still_there]


def remove_file(session: Session, index: int) -> Session:
    _require(session, QUEUED)
    if index < 0 or index >= len(session.files):
        raise IndexError(f"No queued file at position {index}.")
    files = [f for i, f in enumerate(session.files) if i != index]
    return replace(session, stage=QUEUED if files else IDLE, files=files)


def begin_processing(session: Session) -> Session:
    _require(session, QUEUED)
    if not session.files:
        raise InvalidTransition("No files queued.")
    return replace(session, stage=PROCESSING, error=None)


def finish_batch(session: Session, data: Optional[OrderData], errors: List[str]) -> Session:
    """
    Orders found -> ready (errors still shown); otherwise back to the queue
    with the error list, or the no-data message when nothing failed.
    """
    _require(session, PROCESSING)
    message = "\n".join(errors) if errors else None
    if data is not None and data.orders:
        first = data.orders[0].product
        return replace(
            session,
            stage=READY,
            data=data,
            error=message,
            global_product=first or session.global_product,
        )
    return replace(session, stage=QUEUED, error=message or NO_DATA_MSG)


def fail_batch(session: Session, message: str) -> Session:
    _require(session, PROCESSING)
    return replace(session, stage=QUEUED, error=message)


def begin_preview(session: Session) -> Session:
    _require(session, READY, PREVIEWING)
    if not session.has_orders:
        raise InvalidTransition("There are no orders to preview.")
    return replace(session, stage=PREVIEWING)


def end_preview(session: Session) -> Session:
    _require(session, PREVIEWING, READY)
    return replace(session, stage=READY)


def edit_orders(session: Session, data: OrderData) -> Session:
    _require(session, *EDITABLE)
    return replace(session, data=data)


def update_settings(
    session: Session,
    slice_mode: Optional[str] = None,
    selected_date: Optional[str] = None,
    global_product: Optional[str] = None,
) -> Session:
    changes: Dict[str, Any] = {}
    if slice_mode is not None:
        slice_capacity(slice_mode)
        changes["slice_mode"] = slice_mode
    if selected_date is not None:
        changes["selected_date"] = parse_selected_date(selected_date).isoformat()
    if global_product is not None:
        changes["global_product"] = global_product
    return replace(session, **changes)


def reset(session: Session) -> Session:
    return Session(slice_mode=session.slice_mode, selected_date=session.selected_date)
