"""
Persistence adapter for durable edit rows.

Two implementations of the same async contract:

* InMemoryEditRepository - dict-backed, used by tests and when no
  DATABASE_URL is configured.
* SqlEditRepository - SQLAlchemy models for the ``reports`` and ``pdf_edits``
  tables. Sessions are synchronous and run in FastAPI's threadpool.

Callers pre-generate the primary key, so insert is idempotent by id.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, create_engine,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from models import EditKind, EditRecord

logger = logging.getLogger(__name__)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# EditRecord field -> pdf_edits column
RECORD_COLUMNS = {
    "document_id": "report_id",
    "page": "page_number",
    "kind": "edit_type",
    "content": "content",
    "x": "position_x",
    "y": "position_y",
    "width": "width",
    "height": "height",
    "font_size": "font_size",
    "font_family": "font_family",
    "color": "color",
    "image_ref": "image_url",
    "deleted": "is_deleted",
}


class EditRepository(Protocol):
    """Contract consumed by the EditStore."""

    async def insert(self, record: EditRecord) -> None: ...

    async def update(self, edit_id: str, fields: Dict[str, Any]) -> None: ...

    async def delete(self, edit_id: str) -> None: ...

    async def list_by_document(self, document_id: str) -> List[EditRecord]: ...

    async def register_document(self, document_id: str, pdf_ref: str, title: str = None) -> None: ...

    async def document_ref(self, document_id: str) -> Optional[str]: ...


def _check_fields(fields: Dict[str, Any]) -> None:
    unknown = set(fields) - set(RECORD_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown edit fields: {sorted(unknown)}")


class InMemoryEditRepository:
    """Dict-backed repository with the same semantics as the SQL one."""

    def __init__(self):
        self.rows: Dict[str, EditRecord] = {}
        self.documents: Dict[str, str] = {}

    async def insert(self, record: EditRecord) -> None:
        self.rows[record.id] = record

    async def update(self, edit_id: str, fields: Dict[str, Any]) -> None:
        _check_fields(fields)
        row = self.rows.get(edit_id)
        if row is None:
            return
        for name, value in fields.items():
            setattr(row, name, value)

    async def delete(self, edit_id: str) -> None:
        self.rows.pop(edit_id, None)

    async def list_by_document(self, document_id: str) -> List[EditRecord]:
        return [row for row in self.rows.values() if row.document_id == document_id]

    async def register_document(self, document_id: str, pdf_ref: str, title: str = None) -> None:
        self.documents[document_id] = pdf_ref

    async def document_ref(self, document_id: str) -> Optional[str]:
        return self.documents.get(document_id)


class Report(Base):
    """A report; the imported PDF lives in the file bucket."""

    __tablename__ = "reports"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(Text, nullable=False)
    content = Column(Text, nullable=True)
    pdf_storage_path = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class PdfEdit(Base):
    """User-authored text overlays and image overlays of a report."""

    __tablename__ = "pdf_edits"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    report_id = Column(String(36), ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)
    page_number = Column(Integer, nullable=False)
    edit_type = Column(String(20), nullable=False)  # text, image
    content = Column(Text, nullable=True)
    position_x = Column(Float, nullable=False)
    position_y = Column(Float, nullable=False)
    width = Column(Float, nullable=True)
    height = Column(Float, nullable=True)
    font_size = Column(Float, default=16)
    font_family = Column(Text, default="Arial")
    color = Column(Text, default="#000000")
    image_url = Column(Text, nullable=True)
    is_deleted = Column(Boolean, default=False)
    edit_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_record(self) -> EditRecord:
        return EditRecord(
            id=self.id,
            document_id=self.report_id,
            page=self.page_number,
            kind=EditKind(self.edit_type),
            x=float(self.position_x),
            y=float(self.position_y),
            content=self.content,
            width=float(self.width) if self.width is not None else None,
            height=float(self.height) if self.height is not None else None,
            font_size=float(self.font_size) if self.font_size is not None else None,
            font_family=self.font_family,
            color=self.color,
            image_ref=self.image_url,
            deleted=bool(self.is_deleted),
        )


def init_schema(engine) -> None:
    """Create tables if they do not exist."""
    Base.metadata.create_all(engine)


class SqlEditRepository:
    """pdf_edits persistence over a SQLAlchemy engine."""

    def __init__(self, database_url: str = None, engine=None, echo: bool = False):
        if engine is None:
            engine = create_engine(database_url, pool_pre_ping=True, echo=echo)
        self.engine = engine
        self.session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        init_schema(engine)

    def _run(self, work):
        session: Session = self.session_factory()
        try:
            result = work(session)
            session.commit()
            return result
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def insert(self, record: EditRecord) -> None:
        def work(session: Session):
            row = PdfEdit(id=record.id)
            for name, column in RECORD_COLUMNS.items():
                value = getattr(record, name)
                setattr(row, column, value.value if isinstance(value, EditKind) else value)
            session.merge(row)

        await run_in_threadpool(self._run, work)

    async def update(self, edit_id: str, fields: Dict[str, Any]) -> None:
        _check_fields(fields)

        def work(session: Session):
            row = session.get(PdfEdit, edit_id)
            if row is None:
                logger.debug("Update for missing edit %s ignored", edit_id)
                return
            for name, value in fields.items():
                setattr(row, RECORD_COLUMNS[name], value.value if isinstance(value, EditKind) else value)

        await run_in_threadpool(self._run, work)

    async def delete(self, edit_id: str) -> None:
        def work(session: Session):
            row = session.get(PdfEdit, edit_id)
            if row is not None:
                session.delete(row)

        await run_in_threadpool(self._run, work)

    async def list_by_document(self, document_id: str) -> List[EditRecord]:
        def work(session: Session):
            rows = (
                session.query(PdfEdit)
                .filter(PdfEdit.report_id == document_id)
                .order_by(PdfEdit.created_at)
                .all()
            )
            return [row.to_record() for row in rows]

        return await run_in_threadpool(self._run, work)

    async def register_document(self, document_id: str, pdf_ref: str, title: str = None) -> None:
        def work(session: Session):
            report = session.get(Report, document_id)
            if report is None:
                report = Report(id=document_id, title=title or "Untitled report")
                session.add(report)
            report.pdf_storage_path = pdf_ref

        await run_in_threadpool(self._run, work)

    async def document_ref(self, document_id: str) -> Optional[str]:
        def work(session: Session):
            report = session.get(Report, document_id)
            return report.pdf_storage_path if report else None

        return await run_in_threadpool(self._run, work)
