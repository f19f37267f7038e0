import fitz  # PyMuPDF
import pytest

import text_extraction
from conftest import make_pdf
from errors import ExtractionError
from text_extraction import RawTextItem, extract_page, font_size_for, fragments_from_items

SCALES = [0.5, 1.0, 1.5, 2.0, 3.0]


def _item(text="Total: $42", transform=(12, 0, 0, 12, 50, 700), width=60.0, height=12.0):
    return RawTextItem(text=text, transform=transform, width=width, height=height, font_name="Helvetica")


class TestFragmentsFromItems:
    def test_total_scenario(self):
        result = fragments_from_items([_item()], page_number=1, page_height=800, scale=1.0)

        assert len(result.fragments) == 1
        fragment = result.fragments[0]
        assert fragment.content == "Total: $42"
        assert fragment.font_size == 12
        assert fragment.x == 50
        assert fragment.y == 100
        assert (fragment.pdf_x, fragment.pdf_y) == (50, 700)

    def test_one_mask_per_fragment(self):
        items = [_item(), _item("Second", (10, 0, 0, 10, 50, 600)), _item("   ")]
        result = fragments_from_items(items, 1, 800, 1.0)

        assert [f.content for f in result.fragments] == ["Total: $42", "Second"]
        assert len(result.masks) == 2
        assert all(mask.page == 1 for mask in result.masks)

    def test_skips_blank_items(self):
        result = fragments_from_items([_item(""), _item("  \t")], 1, 800, 1.0)
        assert result.fragments == []
        assert result.masks == []

    def test_content_is_trimmed(self):
        result = fragments_from_items([_item("  padded  ")], 1, 800, 1.0)
        assert result.fragments[0].content == "padded"

    @pytest.mark.parametrize("scale", SCALES)
    def test_mask_covers_glyph_box(self, scale):
        font_size, advance = 12.0, 60.0
        ascent, descent = 0.8 * font_size, 0.15 * font_size
        result = fragments_from_items([_item(width=advance)], 1, 800, scale)
        mask = result.masks[0]

        # glyph box in canvas space: baseline at PDF y 700
        gx0, gx1 = 50 * scale, (50 + advance) * scale
        gy0 = (800 - (700 + ascent)) * scale
        gy1 = (800 - (700 - descent)) * scale
        assert mask.contains(gx0, gy0, gx1, gy1)

    @pytest.mark.parametrize("scale", SCALES)
    def test_mask_geometry(self, scale):
        mask = fragments_from_items([_item()], 1, 800, scale).masks[0]
        fs = 12 * scale
        assert mask.x == pytest.approx(50 * scale)
        assert mask.w == pytest.approx(60 * scale)
        assert mask.h == pytest.approx(fs * 1.2)
        assert mask.y == pytest.approx(100 * scale - fs * 1.2 + fs * 0.2)

    def test_mask_padding(self):
        plain = fragments_from_items([_item()], 1, 800, 1.0).masks[0]
        padded = fragments_from_items([_item()], 1, 800, 1.0, mask_padding=2).masks[0]
        assert padded.x == plain.x - 2
        assert padded.y == plain.y - 2
        assert padded.w == plain.w + 4
        assert padded.h == plain.h + 4

    def test_width_fallback_uses_average_char_width(self):
        mask = fragments_from_items([_item("abcd", width=0)], 1, 800, 1.0).masks[0]
        assert mask.w == pytest.approx(4 * 12 * 0.6)

    def test_canvas_font_size_follows_scale(self):
        result = fragments_from_items([_item()], 1, 800, 2.0)
        assert result.fragments[0].font_size == 24

    def test_style_flags_reach_font_family(self):
        bold = RawTextItem(text="Bold", transform=(12, 0, 0, 12, 50, 700), font_name="Helvetica", flags=16)
        result = fragments_from_items([bold, _item()], 1, 800, 1.0)
        assert [f.font_family for f in result.fragments] == ["Helvetica-Bold", "Helvetica"]

    def test_repeatable(self):
        first = fragments_from_items([_item()], 1, 800, 1.5)
        second = fragments_from_items([_item()], 1, 800, 1.5)
        assert first == second


class TestFontSize:
    def test_horizontal_scale_component(self):
        assert font_size_for(_item(transform=(-9, 0, 0, 9, 0, 0))) == 9

    def test_falls_back_to_height(self):
        assert font_size_for(_item(transform=(0, 14, -14, 0, 0, 0), height=14)) == 14

    def test_fallback_minimum(self):
        assert font_size_for(_item(transform=(0, 4, -4, 0, 0, 0), height=4)) == 10


class TestExtractPage:
    def test_total_scenario_from_pdf(self, total_pdf):
        with fitz.open(stream=total_pdf, filetype="pdf") as doc:
            result = extract_page(doc, 1, 1.0)

        assert len(result.fragments) == 1
        fragment = result.fragments[0]
        assert fragment.content == "Total: $42"
        assert fragment.font_size == pytest.approx(12)
        assert fragment.x == pytest.approx(50, abs=0.01)
        assert fragment.y == pytest.approx(100, abs=0.01)
        assert fragment.color == "#000000"
        assert fragment.font_family == "Helvetica"
        assert len(result.masks) == 1

    def test_scale_applies_to_pdf_extraction(self, total_pdf):
        with fitz.open(stream=total_pdf, filetype="pdf") as doc:
            result = extract_page(doc, 1, 2.0)
        assert result.fragments[0].y == pytest.approx(200, abs=0.01)
        assert result.fragments[0].font_size == pytest.approx(24)

    def test_pages_are_separate(self):
        pdf = make_pdf([(1, 50, 700, "first", 12), (2, 60, 500, "second", 14)], pages=2)
        with fitz.open(stream=pdf, filetype="pdf") as doc:
            page_two = extract_page(doc, 2, 1.0)
        assert [f.content for f in page_two.fragments] == ["second"]
        assert page_two.fragments[0].page == 2

    def test_page_out_of_range(self, total_pdf):
        with fitz.open(stream=total_pdf, filetype="pdf") as doc:
            with pytest.raises(ValueError):
                extract_page(doc, 2, 1.0)
            with pytest.raises(ValueError):
                extract_page(doc, 0, 1.0)

    def test_failure_degrades_to_empty_page(self, total_pdf, monkeypatch):
        def broken(page):
            raise RuntimeError("layout failed")

        monkeypatch.setattr(text_extraction, "raw_text_items", broken)
        with fitz.open(stream=total_pdf, filetype="pdf") as doc:
            result = extract_page(doc, 1, 1.0)

        assert result.fragments == []
        assert result.masks == []

    def test_unreadable_layout_raises_extraction_error(self):
        class BrokenPage:
            number = 0
            rect = fitz.Rect(0, 0, 612, 800)

            def get_text(self, option):
                raise RuntimeError("bad content stream")

        with pytest.raises(ExtractionError):
            text_extraction.raw_text_items(BrokenPage())
