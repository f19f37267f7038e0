"""
Editing sessions.

An EditorSession ties one opened PDF to its EditStore and tracks what the
editor is looking at (current page, scale). Extraction results are cached
per page for the current scale only; the rendered bitmap is dropped on page
change, scale change or any store change touching the current page.
"""

import logging
from dataclasses import asdict
from typing import Any, Dict, Optional

import fitz  # PyMuPDF

from blob_store import BlobStore
from config import Settings
from edit_store import EditStore
from errors import DocumentLoadError, PersistenceError, SessionNotFoundError
from export_serializer import export_pdf
from models import ExtractionResult
from persistence import EditRepository
from renderer import encode_png, overlay_layer, render_page
from text_extraction import extract_page

logger = logging.getLogger(__name__)


def open_document(source: bytes) -> fitz.Document:
    """Open PDF bytes; anything unusable is a DocumentLoadError."""
    try:
        document = fitz.open(stream=source, filetype="pdf")
    except Exception as e:
        raise DocumentLoadError(f"PDF could not be opened: {e}") from e
    if not document.is_pdf or len(document) == 0:
        document.close()
        raise DocumentLoadError("Document has no pages")
    if document.needs_pass:
        document.close()
        raise DocumentLoadError("Encrypted PDFs are not supported")
    return document


class EditorSession:
    def __init__(
        self,
        document_id: str,
        source: bytes,
        document: fitz.Document,
        repository: EditRepository,
        blob_store: BlobStore,
        settings: Settings,
        pdf_ref: str = None,
    ):
        self.document_id = document_id
        self.source = source
        self.document = document
        self.blob_store = blob_store
        self.settings = settings
        self.pdf_ref = pdf_ref
        self.current_page = 1
        self.render_count = 0

        self._extractions: Dict[int, ExtractionResult] = {}
        self._rendered: Optional[bytes] = None
        self.store = EditStore(
            document_id,
            repository,
            scale=settings.default_scale,
            on_change=self._on_store_change,
        )

    @classmethod
    async def open(
        cls,
        document_id: str,
        source: bytes,
        repository: EditRepository,
        blob_store: BlobStore,
        settings: Settings,
        pdf_ref: str = None,
    ) -> "EditorSession":
        document = open_document(source)
        session = cls(document_id, source, document, repository, blob_store, settings, pdf_ref)
        try:
            await session.store.load()
        except Exception:
            document.close()
            raise
        session.ensure_extracted(session.current_page)
        logger.info("Opened session for %s (%d pages)", document_id, session.page_count)
        return session

    @property
    def page_count(self) -> int:
        return len(self.document)

    @property
    def scale(self) -> float:
        return self.store.scale

    def check_page(self, page: int) -> None:
        if page < 1 or page > self.page_count:
            raise ValueError(f"page {page} out of range 1..{self.page_count}")

    def ensure_extracted(self, page: int) -> ExtractionResult:
        """Extract ``page`` at the current scale unless already done."""
        self.check_page(page)
        result = self._extractions.get(page)
        if result is None:
            result = extract_page(self.document, page, self.scale, self.settings.mask_padding)
            self.store.extract(page, result)
            self._extractions[page] = result
        return result

    def set_page(self, page: int) -> None:
        self.check_page(page)
        if page != self.current_page:
            self.current_page = page
            self._rendered = None
        self.ensure_extracted(page)

    async def set_scale(self, scale: float) -> None:
        """
        Rescale, then re-extract before anything is rendered again.

        Drags still in progress are released first so a dragged original is
        promoted at its new position instead of being dropped with the rest.
        """
        if abs(scale - self.scale) < 1e-9:
            return
        await self.store.release_pending()
        self.store.rescale(scale)
        self._extractions.clear()
        self._rendered = None
        self.ensure_extracted(self.current_page)

    async def view(self, page: int = None, scale: float = None) -> None:
        if scale is not None:
            await self.set_scale(scale)
        if page is not None:
            self.set_page(page)

    def render(self) -> bytes:
        """PNG of the current page with original glyphs masked."""
        result = self.ensure_extracted(self.current_page)
        if self._rendered is None:
            bitmap = render_page(self.document, self.current_page, self.scale, result.masks)
            self._rendered = encode_png(bitmap)
            self.render_count += 1
        return self._rendered

    def page_state(self) -> Dict[str, Any]:
        result = self.ensure_extracted(self.current_page)
        page = self.document[self.current_page - 1]
        return {
            "documentId": self.document_id,
            "page": self.current_page,
            "pageCount": self.page_count,
            "scale": self.scale,
            "width": page.rect.width * self.scale,
            "height": page.rect.height * self.scale,
            "masks": [asdict(mask) for mask in result.masks],
            "overlays": overlay_layer(self.store, self.current_page),
        }

    def export(self) -> bytes:
        return export_pdf(
            self.source,
            self.store.text_edits(),
            self.store.image_edits(include_deleted=True),
            self.scale,
            self.blob_store,
            strict_pages=self.settings.export_strict_pages,
        )

    def close(self) -> None:
        self.document.close()

    def _on_store_change(self, page: Optional[int]) -> None:
        if page is None or page == self.current_page:
            self._rendered = None


class SessionManager:
    """Open sessions of one app instance, keyed by document id."""

    def __init__(self, repository: EditRepository, blob_store: BlobStore, settings: Settings):
        self.repository = repository
        self.blob_store = blob_store
        self.settings = settings
        self.sessions: Dict[str, EditorSession] = {}

    async def open(self, document_id: str, source: bytes, title: str = None) -> EditorSession:
        """Store the PDF in the bucket and open a fresh session for it."""
        document = open_document(source)  # reject before anything is stored
        document.close()

        pdf_ref = self.blob_store.upload(source, "application/pdf")
        try:
            await self.repository.register_document(document_id, pdf_ref, title)
        except Exception as e:
            logger.exception("Registering %s failed", document_id)
            raise PersistenceError("register_document", cause=e) from e
        session = await EditorSession.open(
            document_id, source, self.repository, self.blob_store, self.settings, pdf_ref
        )
        previous = self.sessions.pop(document_id, None)
        if previous is not None:
            previous.close()
        self.sessions[document_id] = session
        return session

    async def get(self, document_id: str) -> EditorSession:
        """Open session, reopened from the bucket if the document is known."""
        session = self.sessions.get(document_id)
        if session is not None:
            return session

        try:
            pdf_ref = await self.repository.document_ref(document_id)
        except Exception as e:
            logger.exception("Looking up %s failed", document_id)
            raise PersistenceError("document_ref", cause=e) from e
        if not pdf_ref:
            raise SessionNotFoundError(f"No PDF imported for report {document_id}")
        source = self.blob_store.fetch(pdf_ref)
        session = await EditorSession.open(
            document_id, source, self.repository, self.blob_store, self.settings, pdf_ref
        )
        self.sessions[document_id] = session
        return session

    def close_all(self) -> None:
        for session in self.sessions.values():
            session.close()
        self.sessions.clear()
