"""
File bucket for PDF and image binaries.

References handed out by ``upload`` look like ``blob://<name>``. ``fetch``
also understands ``data:`` URLs (images inserted straight from the browser)
and plain http(s) URLs (public bucket links).
"""

import base64
import logging
import mimetypes
import os
import uuid
from pathlib import Path
from typing import Protocol

import requests

from errors import BlobNotFoundError

logger = logging.getLogger(__name__)

BLOB_SCHEME = "blob://"

ALLOWED_MIME_TYPES = {
    "application/pdf": "pdf",
    "image/png": "png",
    "image/jpeg": "jpg",
}


class BlobStore(Protocol):
    def upload(self, data: bytes, mime_type: str) -> str: ...

    def fetch(self, ref: str) -> bytes: ...


def decode_data_url(ref: str) -> bytes:
    """Decode a base64 ``data:<mime>;base64,<payload>`` URL."""
    header, _, payload = ref.partition(",")
    if not payload or ";base64" not in header:
        raise BlobNotFoundError(f"Unsupported data URL: {header[:40]}")
    try:
        return base64.b64decode(payload)
    except ValueError as e:
        raise BlobNotFoundError(f"Invalid base64 payload in data URL: {e}") from e


def fetch_url(url: str, timeout: float = 15.0) -> bytes:
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise BlobNotFoundError(f"Failed to fetch {url}: {e}") from e
    return response.content


class LocalBlobStore:
    """Bucket stored as files in a local directory."""

    def __init__(self, root: str, max_bytes: int = 52428800, fetch_timeout: float = 15.0):
        self.root = Path(root)
        self.max_bytes = max_bytes
        self.fetch_timeout = fetch_timeout
        self.root.mkdir(parents=True, exist_ok=True)

    def upload(self, data: bytes, mime_type: str) -> str:
        extension = ALLOWED_MIME_TYPES.get(mime_type)
        if extension is None:
            raise ValueError(f"Mime type not allowed: {mime_type}")
        if len(data) > self.max_bytes:
            raise ValueError(f"File exceeds the {self.max_bytes} byte limit")

        name = f"{uuid.uuid4()}.{extension}"
        (self.root / name).write_bytes(data)
        logger.info("Stored %d bytes as %s", len(data), name)
        return BLOB_SCHEME + name

    def fetch(self, ref: str) -> bytes:
        if ref.startswith("data:"):
            return decode_data_url(ref)
        if ref.startswith(("http://", "https://")):
            return fetch_url(ref, self.fetch_timeout)
        if not ref.startswith(BLOB_SCHEME):
            raise BlobNotFoundError(f"Unknown blob reference: {ref[:60]}")

        name = os.path.basename(ref[len(BLOB_SCHEME):])
        path = self.root / name
        if not path.is_file():
            raise BlobNotFoundError(f"Blob not found: {name}")
        return path.read_bytes()


def guess_mime_type(ref: str) -> str:
    """Mime type implied by a reference (data URL header or file extension)."""
    if ref.startswith("data:"):
        return ref[5:].split(";", 1)[0].split(",", 1)[0].lower()
    mime_type, _ = mimetypes.guess_type(ref.split("?", 1)[0])
    return mime_type or ""
