"""Exception types raised by the editor core."""


class EditorError(Exception):
    """Base class for editor failures."""


class DocumentLoadError(EditorError):
    """The source PDF could not be opened; the editing session is not created."""


class ExtractionError(EditorError):
    """Text-layout extraction of a single page failed."""


class PersistenceError(EditorError):
    """A durable write or read failed. Local optimistic state is kept."""

    def __init__(self, operation: str, edit_id: str = None, cause: Exception = None):
        self.operation = operation
        self.edit_id = edit_id
        self.cause = cause
        detail = f"{operation} failed"
        if edit_id:
            detail += f" for edit {edit_id}"
        if cause is not None:
            detail += f": {cause}"
        super().__init__(detail)


class ExportError(EditorError):
    """Export aborted; no partial PDF is produced."""


class BlobNotFoundError(EditorError):
    """A blob reference could not be resolved."""


class SessionNotFoundError(EditorError):
    """No editing session is open for the requested document."""
