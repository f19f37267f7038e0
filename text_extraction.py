"""
Text-layer extraction for the overlay editor.

Reads the positioned text runs of a page with PyMuPDF, turns them into
canvas-space TextFragments at a render scale and derives the MaskRegions
that blank the original glyphs on the rendered bitmap.

Extraction is pure with respect to the durable store: it only reads the
PDF and never writes edits anywhere.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Tuple

import fitz  # PyMuPDF

from coordinate_transform import scale_length, to_canvas
from errors import ExtractionError
from font_analyzer import clean_font_name, color_int_to_hex, styled_font_name
from models import ExtractionResult, MaskRegion, TextFragment

logger = logging.getLogger(__name__)

MIN_FONT_SIZE = 10.0
LINE_HEIGHT_FACTOR = 1.2
DESCENT_FACTOR = 0.2
AVERAGE_CHAR_WIDTH_FACTOR = 0.6


@dataclass(frozen=True)
class RawTextItem:
    """
    One positioned text run in PDF user space (origin bottom-left, y-up).

    ``transform`` is the (a, b, c, d, e, f) text matrix: a..d carry the font
    size and writing direction, (e, f) is the baseline origin.
    """

    text: str
    transform: Tuple[float, float, float, float, float, float]
    width: float = 0.0
    height: float = 0.0
    font_name: str = ""
    color: int = 0
    flags: int = 0  # PyMuPDF span flags: 2 italic, 16 bold


def raw_text_items(page: fitz.Page) -> List[RawTextItem]:
    """Collect the page's text spans as RawTextItems in PDF space."""
    page_height = page.rect.height
    items = []
    try:
        text_dict = page.get_text("dict")
    except Exception as e:
        raise ExtractionError(f"Text layout of page {page.number + 1} is unreadable: {e}") from e

    for block in text_dict["blocks"]:
        if "lines" not in block:  # image block
            continue
        for line in block["lines"]:
            cos, sin = line.get("dir", (1.0, 0.0))
            for span in line["spans"]:
                size = span["size"]
                origin_x, origin_y = span["origin"]
                x0, y0, x1, y1 = span["bbox"]
                horizontal = abs(cos) >= abs(sin)

                # MuPDF space is y-down, flip sin and the origin for PDF space
                transform = (
                    size * cos,
                    -size * sin,
                    size * sin,
                    size * cos,
                    origin_x,
                    page_height - origin_y,
                )
                items.append(RawTextItem(
                    text=span["text"],
                    transform=transform,
                    width=abs(x1 - x0) if horizontal else abs(y1 - y0),
                    height=abs(y1 - y0) if horizontal else abs(x1 - x0),
                    font_name=clean_font_name(span.get("font", "")),
                    color=span.get("color", 0),
                    flags=span.get("flags", 0),
                ))

    return items


def font_size_for(item: RawTextItem) -> float:
    """Horizontal scale of the text matrix, else the item height (at least 10)."""
    a = abs(item.transform[0])
    if a:
        return a
    return max(item.height or 0.0, MIN_FONT_SIZE)


def fragments_from_items(
    items: List[RawTextItem],
    page_number: int,
    page_height: float,
    scale: float,
    mask_padding: float = 0.0,
) -> ExtractionResult:
    """
    Build canvas-space fragments and their masks from raw items.

    Fragment positions are baseline-left anchors in canvas space; font size,
    mask width and mask height are in canvas units as well.
    """
    result = ExtractionResult(page=page_number, scale=scale)

    for item in items:
        content = (item.text or "").strip()
        if not content:
            continue

        pdf_x, pdf_y = item.transform[4], item.transform[5]
        x, y = to_canvas(pdf_x, pdf_y, page_height, scale)
        font_size = font_size_for(item)
        advance = item.width or len(content) * font_size * AVERAGE_CHAR_WIDTH_FACTOR

        canvas_font_size = scale_length(font_size, scale)
        line_height = canvas_font_size * LINE_HEIGHT_FACTOR
        mask_top = y - line_height + canvas_font_size * DESCENT_FACTOR

        result.fragments.append(TextFragment(
            page=page_number,
            content=content,
            x=x,
            y=y,
            font_size=canvas_font_size,
            color=color_int_to_hex(item.color),
            font_family=styled_font_name(item.font_name or "Helvetica", item.flags),
            pdf_x=pdf_x,
            pdf_y=pdf_y,
        ))
        result.masks.append(MaskRegion(
            page=page_number,
            x=x - mask_padding,
            y=mask_top - mask_padding,
            w=scale_length(advance, scale) + 2 * mask_padding,
            h=line_height + 2 * mask_padding,
        ))

    return result


def extract_page(
    document: fitz.Document,
    page_number: int,
    scale: float,
    mask_padding: float = 0.0,
) -> ExtractionResult:
    """
    Extract fragments and masks for a 1-based page number.

    A failure inside the page's text layout is logged and degrades to an
    empty result; the page then renders without original entries.
    """
    if page_number < 1 or page_number > len(document):
        raise ValueError(f"page {page_number} out of range 1..{len(document)}")
    if not math.isfinite(scale) or scale <= 0:
        raise ValueError(f"scale must be positive, got {scale}")

    try:
        page = document[page_number - 1]
        items = raw_text_items(page)
        result = fragments_from_items(items, page_number, page.rect.height, scale, mask_padding)
    except Exception:
        logger.exception("Text extraction failed for page %s at scale %s", page_number, scale)
        return ExtractionResult(page=page_number, scale=scale)

    logger.debug(
        "Extracted %d fragments from page %s at scale %s",
        len(result.fragments), page_number, scale,
    )
    return result
