# slips.py
from __future__ import annotations

# stdlib
import io
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

# third-party
from PIL import Image, ImageDraw, ImageFont

from .report import PageOrder, Report, Summary, product_font_tier, route_font_tier


# =========================
# CONFIG
# =========================
DPI: int = 200
CSS_DPI: int = 96


def cpx(x: float) -> int:
    # CSS pixel -> page pixel
    return int(round(x * DPI / CSS_DPI))


A4_W_IN: float = 8.27
A4_H_IN: float = 11.69
MARGIN_IN: float = 0.5

PAGE_W_PX = int(A4_W_IN * DPI)
PAGE_H_PX = int(A4_H_IN * DPI)
MARGIN_PX = int(MARGIN_IN * DPI)
CONTENT_W_PX = PAGE_W_PX - 2 * MARGIN_PX

COMPANY_NAME = os.environ.get("REPORT_COMPANY", "Johnston Mooney & O'Brien")

STYLE = {
    "ink": (0, 0, 0),
    "label_grey": (55, 65, 81),
    "muted": (107, 114, 128),
    "rule": (156, 163, 175),
    "table_head_bg": (243, 244, 246),
    "table_foot_bg": (249, 250, 251),
    "table_border": (229, 231, 235),
    "badge_bg": (254, 249, 195),
    "badge_fg": (133, 77, 14),
    "rule_width": cpx(2),
    "dash": cpx(8),
}

# Route / Location | Product | .S | Trays
SUMMARY_COLS = [0.30, 0.45, 0.12, 0.13]

SUMMARY_ROW_FONT_MAX = 14
SUMMARY_ROW_FONT_MIN = 6
QUANTITY_FONT = 320


# =========================
# FONTS
# =========================
_FONT_CACHE: dict = {}

BOLD_FONTS = ("DejaVuSansCondensed-Bold.ttf", "DejaVuSans-Bold.ttf")
REGULAR_FONTS = ("DejaVuSans.ttf", "DejaVuSansCondensed.ttf")


def get_font(size: int, bold: bool = True):
    size = max(1, int(size))
    key = (size, bold)
    if key in _FONT_CACHE:
        return _FONT_CACHE[key]
    for name in (BOLD_FONTS if bold else REGULAR_FONTS):
        try:
            f = ImageFont.truetype(name, size)
            _FONT_CACHE[key] = f
            return f
        except Exception:
            continue
    try:
        f = ImageFont.load_default(size=size)
    except TypeError:
        f = ImageFont.load_default()
    _FONT_CACHE[key] = f
    return f


# =========================
# HELPERS
# =========================
def warn(msg: str):
    print("[WARN]", msg, flush=True)


def _tw(d: ImageDraw.ImageDraw, s: str, font) -> int:
    if not s:
        return 0
    box = d.textbbox((0, 0), s, font=font)
    return int(box[2] - box[0])


def _th(d: ImageDraw.ImageDraw, font) -> int:
    box = d.textbbox((0, 0), "Hg", font=font)
    return int(box[3] - box[1])


def wrap_text(d: ImageDraw.ImageDraw, text: str, font, max_w: int) -> List[str]:
    """Greedy word wrap; a single word wider than max_w gets its own line."""
    words = str(text or "").split()
    if not words:
        return [""]
    lines: List[str] = []
    cur = words[0]
    for w in words[1:]:
        trial = f"{cur} {w}"
        if _tw(d, trial, font) <= max_w:
            cur = trial
        else:
            lines.append(cur)
            cur = w
    lines.append(cur)
    return lines


def ellipsize(d: ImageDraw.ImageDraw, text: str, font, max_w: int) -> str:
    s = str(text or "")
    if _tw(d, s, font) <= max_w:
        return s
    while s and _tw(d, s + "…", font) > max_w:
        s = s[:-1]
    return (s + "…") if s else ""


def _dashed_line(d: ImageDraw.ImageDraw, x0: int, x1: int, y: int, fill, width: int):
    dash = STYLE["dash"]
    x = x0
    while x < x1:
        d.line([(x, y), (min(x + dash, x1), y)], fill=fill, width=width)
        x += dash * 2


def _header(d: ImageDraw.ImageDraw, date_label: str, time_label: Optional[str] = None) -> int:
    """Company left, date (and time) right, rule underneath. Returns next y."""
    y = MARGIN_PX
    x_right = PAGE_W_PX - MARGIN_PX
    d.text((MARGIN_PX, y), COMPANY_NAME, anchor="la", font=get_font(cpx(20)), fill=STYLE["ink"])
    d.text((x_right, y), str(date_label or ""), anchor="ra", font=get_font(cpx(18)), fill=STYLE["ink"])
    line_h = _th(d, get_font(cpx(20)))
    if time_label:
        d.text((x_right, y + line_h + cpx(6)), f"Time: {time_label}", anchor="ra", font=get_font(cpx(18), bold=False), fill=STYLE["ink"])
        line_h = line_h * 2 + cpx(6)
    y += line_h + cpx(16)
    d.line([(MARGIN_PX, y), (x_right, y)], fill=STYLE["ink"], width=STYLE["rule_width"])
    return y + cpx(32)


def current_time_label() -> str:
    return datetime.now().strftime("%I:%M %p").lower()


# =========================
# SUMMARY PAGE
# =========================
def render_summary_page(summary: Summary, time_label: Optional[str] = None) -> Image.Image:
    """
    Single page: title, primary product, table of every valid order
    (stock rows greyed with a badge) and the production total. Row font
    shrinks until the whole table fits.
    """
    page = Image.new("RGB", (PAGE_W_PX, PAGE_H_PX), "white")
    d = ImageDraw.Draw(page)

    y = _header(d, summary.date_label, time_label or current_time_label())
    x_center = PAGE_W_PX // 2

    d.text((x_center, y), "Slice Order Summary", anchor="ma", font=get_font(cpx(36)), fill=STYLE["ink"])
    y += _th(d, get_font(cpx(36))) + cpx(32)

    d.text((MARGIN_PX, y), "Detailed Breakdown", anchor="la", font=get_font(cpx(24)), fill=STYLE["ink"])
    y += _th(d, get_font(cpx(24))) + cpx(10)

    d.text((x_center, y), summary.primary_product, anchor="ma", font=get_font(cpx(20)), fill=STYLE["label_grey"])
    y += _th(d, get_font(cpx(20))) + cpx(18)

    col_w = [int(CONTENT_W_PX * f) for f in SUMMARY_COLS]
    col_w[-1] = CONTENT_W_PX - sum(col_w[:-1])
    col_x = [MARGIN_PX + sum(col_w[:i]) for i in range(len(col_w))]
    pad = cpx(12)

    rows = list(summary.rows)
    bottom_limit = PAGE_H_PX - MARGIN_PX
    available_h = max(cpx(10), bottom_limit - y)

    # header row + rows + footer row
    row_font_px = None
    row_h = 0
    for size in range(SUMMARY_ROW_FONT_MAX, SUMMARY_ROW_FONT_MIN - 1, -1):
        row_h = _th(d, get_font(cpx(size))) + cpx(size * 1.6)
        if row_h * (len(rows) + 2) <= available_h:
            row_font_px = cpx(size)
            break
    if row_font_px is None:
        row_h = max(3, available_h // (len(rows) + 2))
        row_font_px = max(1, int(row_h * 0.6))
        warn(f"Summary has {len(rows)} rows; shrinking rows to {row_h}px to keep one page")

    head_font = get_font(row_font_px)
    body_font = get_font(row_font_px, bold=False)
    bold_font = get_font(row_font_px)
    badge_font = get_font(max(1, int(row_font_px * 0.85)))

    table_top = y
    d.rectangle([MARGIN_PX, y, PAGE_W_PX - MARGIN_PX, y + row_h], fill=STYLE["table_head_bg"])
    heads = ["Route / Location", "Product", ".S", "Trays"]
    for i, title in enumerate(heads):
        if i == len(heads) - 1:
            d.text((col_x[i] + col_w[i] - pad, y + row_h // 2), title, anchor="rm", font=head_font, fill=STYLE["ink"])
        else:
            d.text((col_x[i] + pad, y + row_h // 2), title, anchor="lm", font=head_font, fill=STYLE["ink"])
    y += row_h
    d.line([(MARGIN_PX, y), (PAGE_W_PX - MARGIN_PX, y)], fill=STYLE["table_border"], width=cpx(1))

    for row in rows:
        color = STYLE["muted"] if row.excluded else STYLE["ink"]
        mid = y + row_h // 2
        d.text((col_x[0] + pad, mid), ellipsize(d, row.route, bold_font, col_w[0] - 2 * pad), anchor="lm", font=bold_font, fill=color)
        d.text((col_x[1] + pad, mid), ellipsize(d, row.product, body_font, col_w[1] - 2 * pad), anchor="lm", font=body_font, fill=color)
        if row.excluded:
            label = "In Stock"
            bw = _tw(d, label, badge_font) + pad
            bh = min(row_h - 2, _th(d, badge_font) + cpx(6))
            bx0 = col_x[2] + pad // 2
            by0 = mid - bh // 2
            d.rounded_rectangle([bx0, by0, bx0 + bw, by0 + bh], radius=max(1, bh // 2), fill=STYLE["badge_bg"])
            d.text((bx0 + bw // 2, mid), label, anchor="mm", font=badge_font, fill=STYLE["badge_fg"])
        d.text((col_x[3] + col_w[3] - pad, mid), str(row.trays), anchor="rm", font=bold_font, fill=color)
        y += row_h
        d.line([(MARGIN_PX, y), (PAGE_W_PX - MARGIN_PX, y)], fill=STYLE["table_border"], width=cpx(1))

    d.rectangle([MARGIN_PX, y, PAGE_W_PX - MARGIN_PX, y + row_h], fill=STYLE["table_foot_bg"])
    d.line([(MARGIN_PX, y), (PAGE_W_PX - MARGIN_PX, y)], fill=STYLE["rule"], width=cpx(2))
    mid = y + row_h // 2
    d.text((col_x[3] - pad, mid), "Total Trays (To Produce)", anchor="rm", font=bold_font, fill=STYLE["ink"])
    d.text((col_x[3] + col_w[3] - pad, mid), str(summary.total_trays), anchor="rm", font=bold_font, fill=STYLE["ink"])
    y += row_h

    d.rectangle([MARGIN_PX, table_top, PAGE_W_PX - MARGIN_PX, y], outline=STYLE["table_border"], width=cpx(1))
    return page


# =========================
# SLIP PAGE
# =========================
def _fit_font(d: ImageDraw.ImageDraw, text: str, size: int, max_w: int, min_size: int = 8):
    """Largest font <= size whose single-line width fits max_w."""
    size = int(size)
    while size > min_size:
        f = get_font(size)
        if _tw(d, text, f) <= max_w:
            return f
        size -= max(1, size // 20)
    return get_font(min_size)


def _draw_block(d: ImageDraw.ImageDraw, lines: List[str], font, y: int, fill) -> int:
    x_center = PAGE_W_PX // 2
    lh = _th(d, font)
    for line in lines:
        d.text((x_center, y), line, anchor="ma", font=font, fill=fill)
        y += lh + cpx(8)
    return y


def render_slip_page(page: PageOrder, date_label: str) -> Image.Image:
    img = Image.new("RGB", (PAGE_W_PX, PAGE_H_PX), "white")
    d = ImageDraw.Draw(img)

    top = _header(d, date_label)
    label_font = get_font(cpx(20))
    label_h = _th(d, label_font)

    _tier, route_px = route_font_tier(page.route)
    route_font = get_font(cpx(route_px))
    route_lines = wrap_text(d, page.route.upper(), route_font, CONTENT_W_PX)

    _tier, product_px = product_font_tier(page.product)
    product_font = get_font(cpx(product_px))
    product_lines = wrap_text(d, page.product, product_font, CONTENT_W_PX)

    qty = str(page.trays)
    qty_font = _fit_font(d, qty, cpx(QUANTITY_FONT), CONTENT_W_PX)
    qty_h = _th(d, qty_font)

    gap = cpx(32)
    band_pad = cpx(24)
    route_h = len(route_lines) * (_th(d, route_font) + cpx(8))
    product_h = len(product_lines) * (_th(d, product_font) + cpx(8))
    content_h = (
        label_h + cpx(8) + route_h + gap
        + band_pad + label_h + cpx(8) + product_h + band_pad + gap
        + label_h + cpx(8) + qty_h
    )

    avail_top = top
    avail_bottom = PAGE_H_PX - MARGIN_PX
    if content_h > (avail_bottom - avail_top):
        warn(f"{page.route} ({page.page_key}): slip content taller than page")
    y = max(avail_top, avail_top + ((avail_bottom - avail_top) - content_h) // 2)
    x_center = PAGE_W_PX // 2

    # route
    d.text((x_center, y), "ROUTE PRODUCT:", anchor="ma", font=label_font, fill=STYLE["label_grey"])
    y += label_h + cpx(8)
    y = _draw_block(d, route_lines, route_font, y, STYLE["ink"])
    y += gap

    # product band
    _dashed_line(d, MARGIN_PX, PAGE_W_PX - MARGIN_PX, y, STYLE["rule"], STYLE["rule_width"])
    y += band_pad
    d.text((x_center, y), "PRODUCT NAME:", anchor="ma", font=label_font, fill=STYLE["label_grey"])
    y += label_h + cpx(8)
    y = _draw_block(d, product_lines, product_font, y, STYLE["ink"])
    y += band_pad
    _dashed_line(d, MARGIN_PX, PAGE_W_PX - MARGIN_PX, y, STYLE["rule"], STYLE["rule_width"])
    y += gap

    # quantity
    d.text((x_center, y), "QUANTITY", anchor="ma", font=label_font, fill=STYLE["label_grey"])
    y += label_h + cpx(8)
    d.text((x_center, y), qty, anchor="ma", font=qty_font, fill=STYLE["ink"])

    if page.total_pages > 1:
        d.text(
            (PAGE_W_PX - MARGIN_PX, avail_bottom),
            f"Page {page.page_number} of {page.total_pages}",
            anchor="rd",
            font=get_font(cpx(16), bold=False),
            fill=STYLE["muted"],
        )
    return img


# =========================
# OUTPUT
# =========================
def render_pages(report: Report, time_label: Optional[str] = None) -> List[Image.Image]:
    pages = [render_summary_page(report.summary, time_label)]
    for p in report.pages:
        pages.append(render_slip_page(p, report.summary.date_label))
    return pages


def render_page(report: Report, number: int, time_label: Optional[str] = None) -> Image.Image:
    """number is 1-based: 1 = summary, 2.. = slips."""
    if number < 1 or number > report.page_count:
        raise IndexError(f"Page {number} out of range 1..{report.page_count}")
    if number == 1:
        return render_summary_page(report.summary, time_label)
    return render_slip_page(report.pages[number - 2], report.summary.date_label)


def page_png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def build_report_pdf(report: Report, output_pdf: str, time_label: Optional[str] = None) -> Tuple[str, int]:
    pages = render_pages(report, time_label)
    Path(output_pdf).parent.mkdir(parents=True, exist_ok=True)
    pages[0].save(output_pdf, save_all=True, append_images=pages[1:], resolution=DPI)
    print(f"[report] {len(pages)} page(s) => {output_pdf}", flush=True)
    return str(output_pdf), len(pages)
