"""
Edit Store - reconciliation of extracted PDF text with user edits.

Holds the merged set of text and image overlays of one document. Text
entries are either ORIGINAL (derived from the page's text layer on every
extraction pass, never persisted) or USER_AUTHORED (durable, persisted).

Any mutation of an ORIGINAL entry promotes it: a fresh durable id is minted,
the merged record is inserted, and the original entry is replaced in place
by the user-authored one. Content edits, moves and drag releases all go
through the same promotion path.

In-memory state is updated before the durable write is awaited. A failed
write is logged and raised as PersistenceError; local state is not rolled
back and nothing is retried.
"""

import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Set, Union

from errors import PersistenceError
from models import (
    DEFAULT_COLOR, DEFAULT_FONT_FAMILY, DEFAULT_FONT_SIZE, DEFAULT_IMAGE_SIZE,
    EditKind, EditRecord, ExtractionResult, ImageEdit, Origin, RemoveOutcome, TextEdit,
)
from persistence import EditRepository

logger = logging.getLogger(__name__)

TEXT_FIELDS = {"content", "x", "y", "font_size", "color", "font_family"}
IMAGE_FIELDS = {"x", "y", "width", "height", "image_ref"}
# Fields stored at unit scale in the durable store
SCALED_FIELDS = {"x", "y", "font_size", "width", "height"}

ChangeListener = Callable[[Optional[int]], None]
Edit = Union[TextEdit, ImageEdit]


def original_id(page: int, pdf_x: float, pdf_y: float) -> str:
    """Deterministic id of an original entry, independent of render scale."""
    return f"original-{page}-{pdf_x:.2f}-{pdf_y:.2f}"


def _check_changes(changes: Dict[str, Any], allowed: Set[str], kind: str) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Unknown {kind} fields: {sorted(unknown)}")
    missing = sorted(name for name, value in changes.items() if value is None)
    if missing:
        raise ValueError(f"{kind.capitalize()} fields cannot be null: {missing}")


class EditStore:
    def __init__(
        self,
        document_id: str,
        repository: EditRepository,
        scale: float = 1.0,
        on_change: ChangeListener = None,
    ):
        if scale <= 0:
            raise ValueError(f"scale must be positive, got {scale}")
        self.document_id = document_id
        self.repository = repository
        self.scale = scale
        self.on_change = on_change

        self._texts: Dict[str, TextEdit] = {}
        self._images: Dict[str, ImageEdit] = {}
        self._originals_by_page: Dict[int, List[str]] = {}
        # original id -> durable id it was promoted to
        self._promoted: Dict[str, str] = {}
        # originals the user removed; kept out of later extraction passes
        self._hidden: Set[str] = set()
        # entries moved by drag() and not yet released
        self._dragging: Set[str] = set()

    # ------------------------------------------------------------------
    # queries

    def get(self, edit_id: str) -> Optional[Edit]:
        edit_id = self._resolve(edit_id)
        return self._texts.get(edit_id) or self._images.get(edit_id)

    def text_edits(self, page: int = None, origin: Origin = None) -> List[TextEdit]:
        return [
            t for t in self._texts.values()
            if (page is None or t.page == page) and (origin is None or t.origin is origin)
        ]

    def originals(self, page: int = None) -> List[TextEdit]:
        return self.text_edits(page, Origin.ORIGINAL)

    def user_authored(self, page: int = None) -> List[TextEdit]:
        return self.text_edits(page, Origin.USER_AUTHORED)

    def image_edits(self, page: int = None, include_deleted: bool = False) -> List[ImageEdit]:
        return [
            img for img in self._images.values()
            if (page is None or img.page == page) and (include_deleted or not img.deleted)
        ]

    def is_hidden(self, edit_id: str) -> bool:
        return edit_id in self._hidden

    def promoted_id(self, edit_id: str) -> Optional[str]:
        return self._promoted.get(edit_id)

    # ------------------------------------------------------------------
    # load / extraction

    async def load(self) -> int:
        """Seed durable entries from the repository. Returns the row count."""
        try:
            records = await self.repository.list_by_document(self.document_id)
        except Exception as e:
            logger.exception("Loading edits for %s failed", self.document_id)
            raise PersistenceError("list_by_document", cause=e) from e

        self._texts = {k: v for k, v in self._texts.items() if v.is_original}
        self._images = {}
        for record in records:
            if record.kind is EditKind.TEXT:
                self._texts[record.id] = self._text_from_record(record)
            elif record.kind is EditKind.IMAGE:
                self._images[record.id] = self._image_from_record(record)

        logger.info("Loaded %d persisted edits for %s", len(records), self.document_id)
        self._notify(None)
        return len(records)

    def extract(self, page: int, result: ExtractionResult) -> List[TextEdit]:
        """
        Replace the ORIGINAL entries of ``page`` with the extracted fragments.

        User-authored entries are never touched, even where they sit on top of
        an extracted fragment. Hidden and promoted originals stay out.
        """
        if result.page != page:
            raise ValueError(f"extraction result is for page {result.page}, not {page}")
        if abs(result.scale - self.scale) > 1e-9:
            raise ValueError(f"extraction scale {result.scale} does not match store scale {self.scale}")

        for stale_id in self._originals_by_page.pop(page, []):
            self._texts.pop(stale_id, None)

        fresh = []
        seen: Set[str] = set()
        for fragment in result.fragments:
            base_id = original_id(page, fragment.pdf_x, fragment.pdf_y)
            entry_id, n = base_id, 1
            while entry_id in seen:
                entry_id = f"{base_id}-{n}"
                n += 1
            seen.add(entry_id)

            if entry_id in self._hidden or entry_id in self._promoted:
                continue

            entry = TextEdit(
                id=entry_id,
                page=page,
                content=fragment.content,
                x=fragment.x,
                y=fragment.y,
                font_size=fragment.font_size,
                color=fragment.color,
                font_family=fragment.font_family,
                origin=Origin.ORIGINAL,
            )
            self._texts[entry_id] = entry
            fresh.append(entry)

        self._originals_by_page[page] = [entry.id for entry in fresh]
        self._notify(page)
        return fresh

    def rescale(self, new_scale: float) -> None:
        """
        Switch the store to a new render scale.

        Durable entries are scaled in place; ORIGINAL entries are dropped and
        must be re-extracted at the new scale.
        An ORIGINAL still being dragged is dropped with the rest; callers
        release pending drags first (see release_pending).
        """
        if new_scale <= 0:
            raise ValueError(f"scale must be positive, got {new_scale}")
        factor = new_scale / self.scale

        for stale_ids in self._originals_by_page.values():
            for stale_id in stale_ids:
                self._texts.pop(stale_id, None)
                self._dragging.discard(stale_id)
        self._originals_by_page.clear()

        for text in self._texts.values():
            text.x *= factor
            text.y *= factor
            text.font_size *= factor
        for img in self._images.values():
            img.x *= factor
            img.y *= factor
            img.width *= factor
            img.height *= factor

        self.scale = new_scale
        self._notify(None)

    # ------------------------------------------------------------------
    # mutations

    async def create_text(
        self,
        page: int,
        x: float,
        y: float,
        content: str = "Double-click to edit",
        font_size: float = DEFAULT_FONT_SIZE,
        color: str = DEFAULT_COLOR,
        font_family: str = DEFAULT_FONT_FAMILY,
    ) -> TextEdit:
        entry = TextEdit(
            id=str(uuid.uuid4()),
            page=page,
            content=content,
            x=x,
            y=y,
            font_size=font_size,
            color=color,
            font_family=font_family,
        )
        self._texts[entry.id] = entry
        self._notify(page)
        await self._persist("insert", entry.id, self.repository.insert(self._to_record(entry)))
        return entry

    async def create_image(
        self,
        page: int,
        image_ref: str,
        x: float,
        y: float,
        width: float = DEFAULT_IMAGE_SIZE,
        height: float = DEFAULT_IMAGE_SIZE,
    ) -> ImageEdit:
        entry = ImageEdit(
            id=str(uuid.uuid4()),
            page=page,
            image_ref=image_ref,
            x=x,
            y=y,
            width=width,
            height=height,
        )
        self._images[entry.id] = entry
        self._notify(page)
        await self._persist("insert", entry.id, self.repository.insert(self._to_record(entry)))
        return entry

    async def mutate(self, edit_id: str, **changes: Any) -> Optional[Edit]:
        """
        Apply ``changes`` to an edit.

        ORIGINAL text is promoted to a new USER_AUTHORED entry; a later
        mutation addressed to the same original id lands on that entry.
        Unknown ids are a no-op returning None.
        """
        edit_id = self._resolve(edit_id)

        if edit_id in self._images:
            return await self._update_image(self._images[edit_id], changes)

        entry = self._texts.get(edit_id)
        if entry is None:
            logger.debug("Mutation for unknown edit %s ignored", edit_id)
            return None

        _check_changes(changes, TEXT_FIELDS, "text")

        if entry.origin is Origin.ORIGINAL:
            return await self._promote(entry, changes)

        for name, value in changes.items():
            setattr(entry, name, value)
        self._notify(entry.page)
        if changes:
            await self._persist(
                "update", entry.id, self.repository.update(entry.id, self._record_fields(changes))
            )
        return entry

    async def move(self, edit_id: str, x: float, y: float) -> Optional[Edit]:
        return await self.mutate(edit_id, x=x, y=y)

    def drag(self, edit_id: str, x: float, y: float) -> Optional[Edit]:
        """Intermediate drag position: memory only, no promotion, no write."""
        entry = self.get(edit_id)
        if entry is None:
            return None
        entry.x = x
        entry.y = y
        self._dragging.add(entry.id)
        self._notify(entry.page)
        return entry

    async def release(self, edit_id: str) -> Optional[Edit]:
        """End of a drag: one durable write at the current position."""
        entry = self.get(edit_id)
        if entry is None:
            return None
        self._dragging.discard(entry.id)
        return await self.move(entry.id, entry.x, entry.y)

    async def release_pending(self) -> List[Edit]:
        """Release every drag still in progress."""
        released = []
        for edit_id in list(self._dragging):
            entry = await self.release(edit_id)
            if entry is not None:
                released.append(entry)
        return released

    async def remove(self, edit_id: str) -> Optional[RemoveOutcome]:
        edit_id = self._resolve(edit_id)
        self._dragging.discard(edit_id)

        image = self._images.get(edit_id)
        if image is not None:
            image.deleted = True
            self._notify(image.page)
            await self._persist("update", image.id, self.repository.update(image.id, {"deleted": True}))
            return RemoveOutcome.SOFT_DELETED

        entry = self._texts.pop(edit_id, None)
        if entry is None:
            logger.debug("Remove for unknown edit %s ignored", edit_id)
            return None

        if entry.origin is Origin.ORIGINAL:
            self._forget_original(entry)
            self._hidden.add(entry.id)
            self._notify(entry.page)
            return RemoveOutcome.HIDDEN

        self._notify(entry.page)
        await self._persist("delete", entry.id, self.repository.delete(entry.id))
        return RemoveOutcome.DELETED

    # ------------------------------------------------------------------
    # internals

    async def _promote(self, entry: TextEdit, changes: Dict[str, Any]) -> TextEdit:
        promoted = entry.promoted(str(uuid.uuid4()), **changes)

        # keep the ordinal position of the replaced entry
        self._texts = {
            (promoted.id if key == entry.id else key): (promoted if key == entry.id else value)
            for key, value in self._texts.items()
        }
        self._forget_original(entry)
        self._promoted[entry.id] = promoted.id
        self._notify(entry.page)

        logger.info("Promoted %s to user edit %s", entry.id, promoted.id)
        await self._persist("insert", promoted.id, self.repository.insert(self._to_record(promoted)))
        return promoted

    async def _update_image(self, image: ImageEdit, changes: Dict[str, Any]) -> ImageEdit:
        _check_changes(changes, IMAGE_FIELDS, "image")
        for name, value in changes.items():
            setattr(image, name, value)
        self._notify(image.page)
        if changes:
            await self._persist(
                "update", image.id, self.repository.update(image.id, self._record_fields(changes))
            )
        return image

    def _forget_original(self, entry: TextEdit) -> None:
        page_ids = self._originals_by_page.get(entry.page, [])
        if entry.id in page_ids:
            page_ids.remove(entry.id)

    def _resolve(self, edit_id: str) -> str:
        return self._promoted.get(edit_id, edit_id)

    def _notify(self, page: Optional[int]) -> None:
        if self.on_change is not None:
            self.on_change(page)

    async def _persist(self, operation: str, edit_id: str, call) -> None:
        try:
            await call
        except Exception as e:
            logger.exception("Persisting %s for edit %s failed", operation, edit_id)
            raise PersistenceError(operation, edit_id, e) from e

    def _record_fields(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        return {
            name: value / self.scale if name in SCALED_FIELDS else value
            for name, value in changes.items()
        }

    def _to_record(self, entry: Edit) -> EditRecord:
        if isinstance(entry, ImageEdit):
            return EditRecord(
                id=entry.id,
                document_id=self.document_id,
                page=entry.page,
                kind=EditKind.IMAGE,
                x=entry.x / self.scale,
                y=entry.y / self.scale,
                width=entry.width / self.scale,
                height=entry.height / self.scale,
                image_ref=entry.image_ref,
                deleted=entry.deleted,
            )
        return EditRecord(
            id=entry.id,
            document_id=self.document_id,
            page=entry.page,
            kind=EditKind.TEXT,
            x=entry.x / self.scale,
            y=entry.y / self.scale,
            content=entry.content,
            font_size=entry.font_size / self.scale,
            font_family=entry.font_family,
            color=entry.color,
        )

    def _text_from_record(self, record: EditRecord) -> TextEdit:
        return TextEdit(
            id=record.id,
            page=record.page,
            content=record.content or "",
            x=record.x * self.scale,
            y=record.y * self.scale,
            font_size=(record.font_size or DEFAULT_FONT_SIZE) * self.scale,
            color=record.color or DEFAULT_COLOR,
            font_family=record.font_family or DEFAULT_FONT_FAMILY,
        )

    def _image_from_record(self, record: EditRecord) -> ImageEdit:
        return ImageEdit(
            id=record.id,
            page=record.page,
            image_ref=record.image_ref or "",
            x=record.x * self.scale,
            y=record.y * self.scale,
            width=(record.width or DEFAULT_IMAGE_SIZE) * self.scale,
            height=(record.height or DEFAULT_IMAGE_SIZE) * self.scale,
            deleted=record.deleted,
        )
