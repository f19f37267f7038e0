"""Shared fixtures: synthetic PDFs, images and a recording repository."""

from typing import Iterable, Tuple

import cv2
import fitz  # PyMuPDF
import numpy as np
import pytest

from blob_store import LocalBlobStore
from config import Settings
from persistence import InMemoryEditRepository

PAGE_WIDTH = 612
PAGE_HEIGHT = 800

# (page, pdf_x, pdf_y, text, font size) with PDF-space baseline origin
TextSpec = Tuple[int, float, float, str, float]


def make_pdf(texts: Iterable[TextSpec] = (), pages: int = 1,
             width: float = PAGE_WIDTH, height: float = PAGE_HEIGHT) -> bytes:
    doc = fitz.open()
    for _ in range(pages):
        doc.new_page(width=width, height=height)
    for page_number, pdf_x, pdf_y, text, size in texts:
        page = doc[page_number - 1]
        # insert_text takes a MuPDF-space (y-down) baseline point
        page.insert_text((pdf_x, height - pdf_y), text, fontsize=size, fontname="helv")
    data = doc.tobytes()
    doc.close()
    return data


def make_image(fmt: str = ".png", size: int = 8) -> bytes:
    img = np.zeros((size, size, 3), dtype=np.uint8)
    img[:, :, 2] = 255
    ok, buffer = cv2.imencode(fmt, img)
    assert ok
    return buffer.tobytes()


class RecordingRepository(InMemoryEditRepository):
    """In-memory repository that logs calls and can be told to fail."""

    def __init__(self):
        super().__init__()
        self.calls = []
        self.fail_with = None

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if self.fail_with is not None:
            raise self.fail_with

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)

    async def insert(self, record):
        self._record("insert", record)
        await super().insert(record)

    async def update(self, edit_id, fields):
        self._record("update", edit_id, dict(fields))
        await super().update(edit_id, fields)

    async def delete(self, edit_id):
        self._record("delete", edit_id)
        await super().delete(edit_id)

    async def list_by_document(self, document_id):
        self._record("list_by_document", document_id)
        return await super().list_by_document(document_id)


@pytest.fixture
def total_pdf() -> bytes:
    """One 800-unit-tall page with "Total: $42" at 12pt, baseline (50, 700)."""
    return make_pdf([(1, 50, 700, "Total: $42", 12)])


@pytest.fixture
def repository() -> RecordingRepository:
    return RecordingRepository()


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(str(tmp_path / "bucket"))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        blob_root=str(tmp_path / "bucket"),
        default_scale=1.0,
        database_url=None,
        frontend_url="http://localhost:3000",
    )


@pytest.fixture
def png_bytes() -> bytes:
    return make_image(".png")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image(".jpg")
