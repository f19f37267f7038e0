"""
Page renderer: PDF bitmap at a scale with original glyphs masked out.

Overlay text and images are not baked into the bitmap; ``overlay_layer``
lists them so the browser can draw them as live, editable elements.
"""

import logging
from typing import Any, Dict, Iterable, List

import cv2  # PNG encoding
import fitz  # PyMuPDF
import numpy as np

from edit_store import EditStore
from models import MaskRegion

logger = logging.getLogger(__name__)

MASK_FILL = (255, 255, 255)


def page_bitmap(document: fitz.Document, page_number: int, scale: float) -> np.ndarray:
    """Rasterize a 1-based page to an RGB array at ``scale``."""
    page = document[page_number - 1]
    pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
    img = np.frombuffer(pix.samples, dtype=np.uint8).reshape(pix.height, pix.width, pix.n)
    if pix.n == 1:  # grayscale document
        img = np.repeat(img, 3, axis=2)
    return img[:, :, :3].copy()


def apply_masks(bitmap: np.ndarray, masks: Iterable[MaskRegion], page_number: int) -> int:
    """Fill every mask of the page opaque white, clipped to the bitmap. Returns masks painted."""
    height, width = bitmap.shape[:2]
    painted = 0
    for mask in masks:
        if mask.page != page_number:
            continue
        x0 = max(int(np.floor(mask.x)), 0)
        y0 = max(int(np.floor(mask.y)), 0)
        x1 = min(int(np.ceil(mask.x + mask.w)), width)
        y1 = min(int(np.ceil(mask.y + mask.h)), height)
        if x1 <= x0 or y1 <= y0:
            continue
        bitmap[y0:y1, x0:x1] = MASK_FILL
        painted += 1
    return painted


def render_page(
    document: fitz.Document,
    page_number: int,
    scale: float,
    masks: Iterable[MaskRegion],
) -> np.ndarray:
    bitmap = page_bitmap(document, page_number, scale)
    painted = apply_masks(bitmap, masks, page_number)
    logger.debug("Rendered page %s at scale %s with %d masks", page_number, scale, painted)
    return bitmap


def encode_png(bitmap: np.ndarray) -> bytes:
    ok, buffer = cv2.imencode(".png", cv2.cvtColor(bitmap, cv2.COLOR_RGB2BGR))
    if not ok:
        raise ValueError("PNG encoding failed")
    return buffer.tobytes()


def overlay_layer(store: EditStore, page: int) -> List[Dict[str, Any]]:
    """Live overlay elements for a page: all text entries, then visible images."""
    elements = [text.to_dict() for text in store.text_edits(page)]
    elements.extend(img.to_dict() for img in store.image_edits(page))
    return elements
