"""
Edit data model.

Text edits are a tagged variant: one payload shape, with ``origin`` telling
whether the entry was derived from the source PDF's text layer (ORIGINAL) or
created/promoted by the user (USER_AUTHORED).
"""

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional


DEFAULT_FONT_SIZE = 16
DEFAULT_FONT_FAMILY = "Arial"
DEFAULT_COLOR = "#000000"
DEFAULT_IMAGE_SIZE = 200.0


class Origin(str, Enum):
    ORIGINAL = "original"
    USER_AUTHORED = "user_authored"


class EditKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class RemoveOutcome(str, Enum):
    """What a remove request did, for user-facing messages."""

    HIDDEN = "hidden"  # original text, nothing durable to delete
    DELETED = "deleted"
    SOFT_DELETED = "soft_deleted"


@dataclass(frozen=True)
class TextFragment:
    """Positioned text extracted from the PDF, canvas space at one scale."""

    page: int
    content: str
    x: float
    y: float
    font_size: float
    color: str = DEFAULT_COLOR
    font_family: str = DEFAULT_FONT_FAMILY
    # PDF-space anchor, independent of scale
    pdf_x: float = 0.0
    pdf_y: float = 0.0


@dataclass(frozen=True)
class MaskRegion:
    page: int
    x: float
    y: float
    w: float
    h: float

    def contains(self, x0: float, y0: float, x1: float, y1: float) -> bool:
        return (
            self.x <= x0 and self.y <= y0
            and self.x + self.w >= x1 and self.y + self.h >= y1
        )


@dataclass
class ExtractionResult:
    page: int
    scale: float
    fragments: List[TextFragment] = field(default_factory=list)
    masks: List[MaskRegion] = field(default_factory=list)


@dataclass
class TextEdit:
    id: str
    page: int
    content: str
    x: float
    y: float
    font_size: float = DEFAULT_FONT_SIZE
    color: str = DEFAULT_COLOR
    font_family: str = DEFAULT_FONT_FAMILY
    origin: Origin = Origin.USER_AUTHORED

    @property
    def is_original(self) -> bool:
        return self.origin is Origin.ORIGINAL

    def promoted(self, new_id: str, **changes) -> "TextEdit":
        """Copy of an ORIGINAL entry as a USER_AUTHORED one with a durable id."""
        return replace(self, id=new_id, origin=Origin.USER_AUTHORED, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = EditKind.TEXT.value
        data["origin"] = self.origin.value
        return data


@dataclass
class ImageEdit:
    id: str
    page: int
    image_ref: str
    x: float
    y: float
    width: float = DEFAULT_IMAGE_SIZE
    height: float = DEFAULT_IMAGE_SIZE
    deleted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = EditKind.IMAGE.value
        return data


@dataclass
class EditRecord:
    """A durable pdf_edits row. Coordinates are stored at unit scale."""

    id: str
    document_id: str
    page: int
    kind: EditKind
    x: float
    y: float
    content: Optional[str] = None
    width: Optional[float] = None
    height: Optional[float] = None
    font_size: Optional[float] = None
    font_family: Optional[str] = None
    color: Optional[str] = None
    image_ref: Optional[str] = None
    deleted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data
