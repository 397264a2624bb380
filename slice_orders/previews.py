from __future__ import annotations

import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

import pdfplumber
from PIL import Image

THUMB_SIZE = (240, 240)
PDF_THUMB_DPI = 40


def _open_source_image(path: Path, media_type: str) -> Optional[Image.Image]:
    mt = (media_type or "").lower()
    if mt.startswith("image/"):
        with Image.open(path) as img:
            return img.convert("RGB")
    if mt == "application/pdf" or path.suffix.lower() == ".pdf":
        with pdfplumber.open(str(path)) as pdf:
            if not pdf.pages:
                return None
            return pdf.pages[0].to_image(resolution=PDF_THUMB_DPI).original.convert("RGB")
    return None


class PreviewRegistry:
    """
    Thumbnail files for queued uploads, one directory per job.
    Every handle from acquire() must go through release() exactly once;
    a second release of the same handle is a no-op returning False.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, handle: str) -> Path:
        return self.root / handle

    def acquire(self, source: Path, media_type: str) -> Optional[str]:
        try:
            img = _open_source_image(Path(source), media_type)
        except Exception as exc:
            print(f"[preview] No preview for {Path(source).name}: {exc!r}", flush=True)
            return None
        if img is None:
            return None

        img.thumbnail(THUMB_SIZE)
        self.root.mkdir(parents=True, exist_ok=True)
        handle = f"preview_{uuid.uuid4().hex[:12]}.png"
        img.save(self._path(handle), format="PNG")
        return handle

    def path_of(self, handle: Optional[str]) -> Optional[Path]:
        if not handle:
            return None
        p = self._path(handle)
        return p if p.exists() else None

    def release(self, handle: Optional[str]) -> bool:
        if not handle:
            return False
        p = self._path(handle)
        if not p.exists():
            return False
        p.unlink()
        return True

    def release_all(self, handles: Iterable[Optional[str]]) -> int:
        return sum(1 for h in handles if self.release(h))

    def live(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(p.name for p in self.root.glob("preview_*.png"))

    @contextmanager
    def scoped(self) -> Iterator[List[Optional[str]]]:
        """
        Collects handles acquired inside the block; if the block raises they
        are all released before the exception propagates.
        """
        acquired: List[Optional[str]] = []
        try:
            yield acquired
        except BaseException:
            released = self.release_all(acquired)
            print(f"[preview] Released {released} preview(s) after a failed upload", flush=True)
            raise
