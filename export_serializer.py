"""
Export serializer: replay user edits onto a fresh copy of the source PDF.

Only USER_AUTHORED text is drawn (original text is already in the page
content) and only images that are not soft-deleted. Positions go through
the inverse coordinate transform, then into MuPDF's top-left space for
PyMuPDF's drawing calls.

Any failure aborts the whole export with ExportError; a partial PDF is never
returned. The serializer does not write to any store.
"""

import io
import logging
from typing import Iterable

import cv2  # image validation
import fitz  # PyMuPDF
import numpy as np
import pikepdf  # output verification

from blob_store import BlobStore, guess_mime_type
from coordinate_transform import to_pdf, unscale_length
from errors import ExportError
from font_analyzer import hex_to_rgb, map_to_pymupdf_font
from models import ImageEdit, TextEdit

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SIGNATURE = b"\xff\xd8\xff"


def detect_image_format(data: bytes, ref: str = "") -> str:
    """'png' or 'jpeg' from the byte signature, else from the reference."""
    if data.startswith(PNG_SIGNATURE):
        return "png"
    if data.startswith(JPEG_SIGNATURE):
        return "jpeg"

    mime_type = guess_mime_type(ref)
    if mime_type == "image/png" or ".png" in ref.lower():
        return "png"
    if mime_type in ("image/jpeg", "image/jpg"):
        return "jpeg"
    raise ExportError(f"Unsupported image format for {ref[:60]}")


def decode_image(data: bytes) -> np.ndarray:
    image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise ExportError("Image bytes could not be decoded")
    return image


def _page_for(document: fitz.Document, page_number: int, strict_pages: bool):
    """0-based lookup of a 1-based page; missing pages are skipped unless strict."""
    index = page_number - 1
    if 0 <= index < len(document):
        return document[index]
    if strict_pages:
        raise ExportError(f"Edit references page {page_number}, document has {len(document)}")
    logger.debug("Skipping edit on missing page %s", page_number)
    return None


def draw_text_edit(page: fitz.Page, edit: TextEdit, scale: float) -> fitz.Point:
    page_height = page.rect.height
    pdf_x, pdf_y = to_pdf(edit.x, edit.y, page_height, scale, height=edit.font_size)
    # baseline point in MuPDF space (y-down)
    point = fitz.Point(pdf_x, page_height - pdf_y)
    page.insert_text(
        point,
        edit.content,
        fontsize=unscale_length(edit.font_size, scale),
        fontname=map_to_pymupdf_font(edit.font_family),
        color=hex_to_rgb(edit.color),
    )
    return point


def draw_image_edit(page: fitz.Page, edit: ImageEdit, data: bytes, scale: float) -> fitz.Rect:
    detect_image_format(data, edit.image_ref)
    decode_image(data)

    page_height = page.rect.height
    pdf_x, pdf_y = to_pdf(edit.x, edit.y, page_height, scale, height=edit.height)
    width = unscale_length(edit.width, scale)
    height = unscale_length(edit.height, scale)
    rect = fitz.Rect(pdf_x, page_height - pdf_y - height, pdf_x + width, page_height - pdf_y)
    page.insert_image(rect, stream=data, keep_proportion=False)
    return rect


def verify_pdf(data: bytes, expected_pages: int) -> None:
    try:
        with pikepdf.open(io.BytesIO(data)) as pdf:
            page_count = len(pdf.pages)
    except pikepdf.PdfError as e:
        raise ExportError(f"Exported PDF failed verification: {e}") from e
    if page_count != expected_pages:
        raise ExportError(f"Exported PDF has {page_count} pages, expected {expected_pages}")


def export_pdf(
    source: bytes,
    text_edits: Iterable[TextEdit],
    image_edits: Iterable[ImageEdit],
    scale: float,
    blob_store: BlobStore,
    strict_pages: bool = False,
) -> bytes:
    """Build a standalone PDF with all user edits applied. Returns the bytes."""
    try:
        document = fitz.open(stream=source, filetype="pdf")
    except Exception as e:
        raise ExportError(f"Source PDF could not be opened: {e}") from e

    drawn_texts = drawn_images = 0
    try:
        for edit in text_edits:
            if edit.is_original:
                continue
            page = _page_for(document, edit.page, strict_pages)
            if page is None:
                continue
            draw_text_edit(page, edit, scale)
            drawn_texts += 1

        for edit in image_edits:
            if edit.deleted:
                continue
            page = _page_for(document, edit.page, strict_pages)
            if page is None:
                continue
            draw_image_edit(page, edit, blob_store.fetch(edit.image_ref), scale)
            drawn_images += 1

        page_count = len(document)
        output = document.tobytes(garbage=3, deflate=True)
    except ExportError:
        raise
    except Exception as e:
        logger.exception("Export failed")
        raise ExportError(f"Export failed: {e}") from e
    finally:
        document.close()

    verify_pdf(output, page_count)
    logger.info(
        "Exported PDF with %d text edits and %d images (%d bytes)",
        drawn_texts, drawn_images, len(output),
    )
    return output
