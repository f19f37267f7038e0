"""
PDF overlay editor backend.

Serves the browser editor: PDF import, per-page text extraction with mask
regions, masked page bitmaps, the overlay edit operations (create, edit,
drag/move, delete) and the final PDF export.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from blob_store import LocalBlobStore
from config import Settings, get_settings
from errors import (
    BlobNotFoundError, DocumentLoadError, ExportError, PersistenceError, SessionNotFoundError,
)
from models import DEFAULT_COLOR, DEFAULT_FONT_FAMILY, DEFAULT_FONT_SIZE, DEFAULT_IMAGE_SIZE, RemoveOutcome
from persistence import InMemoryEditRepository, SqlEditRepository
from session import EditorSession, SessionManager

logger = logging.getLogger(__name__)

IMAGE_MIME_TYPES = {"image/png", "image/jpeg"}


class TextEditRequest(BaseModel):
    page: int = Field(ge=1)
    x: float
    y: float
    content: str = "Double-click to edit"
    font_size: float = Field(default=DEFAULT_FONT_SIZE, gt=0)
    color: str = DEFAULT_COLOR
    font_family: str = DEFAULT_FONT_FAMILY


class ImageEditRequest(BaseModel):
    page: int = Field(ge=1)
    image_ref: str  # data URL, public URL or blob:// reference
    x: float
    y: float
    width: float = Field(default=DEFAULT_IMAGE_SIZE, gt=0)
    height: float = Field(default=DEFAULT_IMAGE_SIZE, gt=0)


class MutateRequest(BaseModel):
    content: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None
    font_size: Optional[float] = Field(default=None, gt=0)
    color: Optional[str] = None
    font_family: Optional[str] = None
    width: Optional[float] = Field(default=None, gt=0)
    height: Optional[float] = Field(default=None, gt=0)
    image_ref: Optional[str] = None


class PositionRequest(BaseModel):
    x: float
    y: float


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_session_manager(settings: Settings) -> SessionManager:
    if settings.database_url:
        repository = SqlEditRepository(settings.database_url, echo=settings.debug)
    else:
        logger.warning("DATABASE_URL not set, edits are kept in memory only")
        repository = InMemoryEditRepository()
    blob_store = LocalBlobStore(
        settings.blob_root,
        max_bytes=settings.max_upload_bytes,
        fetch_timeout=settings.fetch_timeout,
    )
    return SessionManager(repository, blob_store, settings)


def get_manager(request: Request) -> SessionManager:
    return request.app.state.sessions


async def get_session(document_id: str, manager: SessionManager = Depends(get_manager)) -> EditorSession:
    return await manager.get(document_id)


def _edit_response(edit, session: EditorSession) -> dict:
    return {
        "success": True,
        "edit": edit.to_dict() if edit is not None else None,
        "scale": session.scale,
    }


def create_app(settings: Settings = None, manager: SessionManager = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.sessions.close_all()

    app = FastAPI(title="PDF Overlay Editor Backend", lifespan=lifespan)
    app.state.settings = settings
    app.state.sessions = manager or build_session_manager(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "Content-Length"],
    )

    def _error(status_code: int, error: Exception, **extra) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"success": False, "error": str(error), **extra})

    @app.exception_handler(DocumentLoadError)
    async def load_error(request: Request, exc: DocumentLoadError):
        logger.warning("PDF load failed: %s", exc)
        return _error(422, exc)

    @app.exception_handler(SessionNotFoundError)
    async def session_missing(request: Request, exc: SessionNotFoundError):
        return _error(404, exc)

    @app.exception_handler(BlobNotFoundError)
    async def blob_missing(request: Request, exc: BlobNotFoundError):
        return _error(404, exc)

    @app.exception_handler(PersistenceError)
    async def persistence_error(request: Request, exc: PersistenceError):
        # local optimistic state is kept, the client decides whether to retry
        return _error(502, exc, operation=exc.operation, editId=exc.edit_id)

    @app.exception_handler(ExportError)
    async def export_error(request: Request, exc: ExportError):
        return _error(500, exc)

    @app.exception_handler(ValueError)
    async def invalid_request(request: Request, exc: ValueError):
        return _error(400, exc)

    @app.get("/")
    async def root():
        return {"message": "PDF Overlay Editor Backend is running!"}

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "sessions": len(app.state.sessions.sessions)}

    @app.post("/reports/{document_id}/pdf")
    async def import_pdf(
        document_id: str,
        file: UploadFile = File(...),
        title: Optional[str] = Form(None),
        manager: SessionManager = Depends(get_manager),
    ):
        """Import a PDF into a report and open its editing session."""
        if not (file.filename or "").lower().endswith(".pdf"):
            raise HTTPException(status_code=400, detail="Only PDF files are allowed")

        content = await file.read()
        if len(content) > settings.max_upload_bytes:
            raise HTTPException(status_code=413, detail="PDF exceeds the upload limit")

        logger.info("Importing PDF for %s: %d bytes", document_id, len(content))
        session = await manager.open(document_id, content, title=title)
        return {
            "success": True,
            "documentId": document_id,
            "pdfRef": session.pdf_ref,
            "pageCount": session.page_count,
            "persistedEdits": len(session.store.user_authored()) + len(session.store.image_edits(include_deleted=True)),
        }

    @app.get("/reports/{document_id}/pages/{page}")
    async def page_state(
        page: int,
        scale: Optional[float] = Query(None, gt=0),
        session: EditorSession = Depends(get_session),
    ):
        await session.view(page=page, scale=scale)
        return {"success": True, **session.page_state()}

    @app.get("/reports/{document_id}/pages/{page}/render")
    async def render_page(
        page: int,
        scale: Optional[float] = Query(None, gt=0),
        session: EditorSession = Depends(get_session),
    ):
        await session.view(page=page, scale=scale)
        return Response(content=session.render(), media_type="image/png")

    @app.post("/reports/{document_id}/edits/text")
    async def create_text(request: TextEditRequest, session: EditorSession = Depends(get_session)):
        session.check_page(request.page)
        edit = await session.store.create_text(**request.model_dump())
        return _edit_response(edit, session)

    @app.post("/reports/{document_id}/edits/image")
    async def create_image(request: ImageEditRequest, session: EditorSession = Depends(get_session)):
        session.check_page(request.page)
        edit = await session.store.create_image(**request.model_dump())
        return _edit_response(edit, session)

    @app.post("/reports/{document_id}/edits/image/upload")
    async def upload_image(
        page: int = Form(..., ge=1),
        x: float = Form(...),
        y: float = Form(...),
        width: float = Form(DEFAULT_IMAGE_SIZE, gt=0),
        height: float = Form(DEFAULT_IMAGE_SIZE, gt=0),
        file: UploadFile = File(...),
        session: EditorSession = Depends(get_session),
    ):
        if file.content_type not in IMAGE_MIME_TYPES:
            raise HTTPException(status_code=400, detail="Only PNG and JPEG images are allowed")
        session.check_page(page)
        image_ref = session.blob_store.upload(await file.read(), file.content_type)
        edit = await session.store.create_image(page, image_ref, x, y, width, height)
        return _edit_response(edit, session)

    @app.patch("/reports/{document_id}/edits/{edit_id}")
    async def mutate_edit(edit_id: str, request: MutateRequest, session: EditorSession = Depends(get_session)):
        changes = request.model_dump(exclude_unset=True)
        edit = await session.store.mutate(edit_id, **changes)
        return _edit_response(edit, session)

    @app.post("/reports/{document_id}/edits/{edit_id}/move")
    async def move_edit(edit_id: str, request: PositionRequest, session: EditorSession = Depends(get_session)):
        edit = await session.store.move(edit_id, request.x, request.y)
        return _edit_response(edit, session)

    @app.post("/reports/{document_id}/edits/{edit_id}/drag")
    async def drag_edit(edit_id: str, request: PositionRequest, session: EditorSession = Depends(get_session)):
        edit = session.store.drag(edit_id, request.x, request.y)
        return _edit_response(edit, session)

    @app.post("/reports/{document_id}/edits/{edit_id}/release")
    async def release_edit(edit_id: str, session: EditorSession = Depends(get_session)):
        edit = await session.store.release(edit_id)
        return _edit_response(edit, session)

    @app.delete("/reports/{document_id}/edits/{edit_id}")
    async def delete_edit(edit_id: str, session: EditorSession = Depends(get_session)):
        outcome = await session.store.remove(edit_id)
        messages = {
            RemoveOutcome.HIDDEN: "Original text hidden",
            RemoveOutcome.DELETED: "Edit removed",
            RemoveOutcome.SOFT_DELETED: "Image deleted from PDF",
        }
        return {
            "success": True,
            "outcome": outcome.value if outcome else None,
            "message": messages.get(outcome, "Nothing to delete"),
        }

    @app.post("/reports/{document_id}/export")
    async def export_pdf(session: EditorSession = Depends(get_session)):
        """Download the edited PDF"""
        pdf_bytes = session.export()
        return Response(
            content=pdf_bytes,
            media_type="application/pdf",
            headers={
                "Content-Disposition": f"attachment; filename=edited-report-{session.document_id}.pdf",
                "Content-Length": str(len(pdf_bytes)),
            },
        )

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
