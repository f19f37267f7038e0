"""
Font and color helpers shared by extraction and export.

Maps extracted PDF font names onto PyMuPDF's builtin Base-14 fonts and
converts between PyMuPDF color integers, hex strings and 0-1 RGB tuples.
"""

import re
from typing import Tuple

BOLD_KEYWORDS = ['bold', 'black', 'heavy', 'demi', 'semibold', 'extrabold', 'ultrabold']
ITALIC_KEYWORDS = ['italic', 'oblique']

HEX_COLOR = re.compile(r'^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$', re.IGNORECASE)


def clean_font_name(raw_font_name: str) -> str:
    """Remove the subset prefix (e.g. ABCDEE+Helvetica-Bold -> Helvetica-Bold)"""
    return re.sub(r'^[A-Z0-9]{6}\+', '', raw_font_name or '')


def is_bold_font(font_name: str, flags: int = 0) -> bool:
    name_lower = (font_name or '').lower()
    return bool(flags & 16) or any(kw in name_lower for kw in BOLD_KEYWORDS)


def is_italic_font(font_name: str, flags: int = 0) -> bool:
    name_lower = (font_name or '').lower()
    return bool(flags & 2) or any(kw in name_lower for kw in ITALIC_KEYWORDS)


def styled_font_name(font_name: str, flags: int = 0) -> str:
    """
    Font name with a -Bold / -Italic suffix added when only the span flags
    (synthetic bold or italic) carry the style.
    """
    bold = is_bold_font(font_name, flags) and not is_bold_font(font_name)
    italic = is_italic_font(font_name, flags) and not is_italic_font(font_name)
    if bold and italic:
        return f"{font_name}-BoldItalic"
    if bold:
        return f"{font_name}-Bold"
    if italic:
        return f"{font_name}-Italic"
    return font_name


def map_to_pymupdf_font(font_name: str, is_bold: bool = False, is_italic: bool = False) -> str:
    """
    Map a font family name to a PyMuPDF builtin font.
    Bold/italic default to what the name itself says.
    """
    font_name_lower = (font_name or '').lower()
    is_bold = is_bold or is_bold_font(font_name)
    is_italic = is_italic or is_italic_font(font_name)

    if any(serif in font_name_lower for serif in ['times', 'serif', 'roman', 'georgia']) \
            and 'sans' not in font_name_lower:
        if is_bold and is_italic:
            return "tibi"
        elif is_bold:
            return "tibo"
        elif is_italic:
            return "tiit"
        return "tiro"

    elif any(mono in font_name_lower for mono in ['courier', 'mono', 'consolas', 'menlo']):
        if is_bold and is_italic:
            return "cobi"
        elif is_bold:
            return "cobo"
        elif is_italic:
            return "coit"
        return "cour"

    # Helvetica family for Arial, Calibri, Segoe and unknown fonts
    if is_bold and is_italic:
        return "hebi"
    elif is_bold:
        return "hebo"
    elif is_italic:
        return "heit"
    return "helv"


def color_int_to_hex(color: int) -> str:
    """PyMuPDF span color (0xRRGGBB int) to '#rrggbb'"""
    if not isinstance(color, int):
        return "#000000"
    r = (color >> 16) & 255
    g = (color >> 8) & 255
    b = color & 255
    return f"#{r:02x}{g:02x}{b:02x}"


def hex_to_rgb(hex_color: str) -> Tuple[float, float, float]:
    """'#rrggbb' to a 0-1 RGB tuple; anything unparseable is black."""
    match = HEX_COLOR.match((hex_color or '').strip())
    if not match:
        return (0.0, 0.0, 0.0)
    return tuple(int(part, 16) / 255.0 for part in match.groups())
