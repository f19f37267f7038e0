"""
Coordinate mapping between PDF user space and canvas space.

PDF user space: origin bottom-left, y grows upward, units are points.
Canvas space: origin top-left, y grows downward, units are points * scale.
"""

from typing import Tuple


def _check_scale(scale: float) -> None:
    if scale <= 0:
        raise ValueError(f"scale must be positive, got {scale}")


def to_canvas(pdf_x: float, pdf_y: float, page_height: float, scale: float) -> Tuple[float, float]:
    """Flip and scale a PDF-space point into canvas space."""
    _check_scale(scale)
    return pdf_x * scale, page_height * scale - pdf_y * scale


def to_pdf(
    canvas_x: float,
    canvas_y: float,
    page_height: float,
    scale: float,
    height: float = 0.0,
) -> Tuple[float, float]:
    """
    Inverse of ``to_canvas``.

    ``height`` is the canvas-space height of the placed element (font size for
    text, image height for images). It is subtracted so the element's lower
    edge lands where the overlay showed its top-left anchor plus its height.
    """
    _check_scale(scale)
    return canvas_x / scale, page_height - canvas_y / scale - height / scale


def scale_length(value: float, scale: float) -> float:
    _check_scale(scale)
    return value * scale


def unscale_length(value: float, scale: float) -> float:
    _check_scale(scale)
    return value / scale
