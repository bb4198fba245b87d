"""
Local image handling for the evaluation pipeline.

Decoding uses Pillow; base64 conversion and size formatting follow the
formats the results table expects (``"640 x 480"``, ``"12.50 KB"``).
Previews are plain temporary copies managed by :class:`PreviewStore`.
"""

from __future__ import annotations

import base64
import binascii
import io
import mimetypes
import re
import shutil
import tempfile
import threading
import uuid
from pathlib import Path

import structlog
from PIL import Image, UnidentifiedImageError

from .config import BASE64_DEFAULT_MIME, SUPPORTED_IMAGE_EXTENSIONS
from .models import ImageInfo, PreviewRef

logger = structlog.get_logger(__name__)

_DATA_URL_RE = re.compile(r"^data:image/[A-Za-z0-9.+-]+;base64,", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


class ImageDecodeError(Exception):
    """Raised when a file or buffer cannot be decoded as an image."""


# ---------------------------------------------------------------------------
# Input filtering
# ---------------------------------------------------------------------------

def is_supported_image(path: str | Path) -> bool:
    return Path(path).suffix.lower() in SUPPORTED_IMAGE_EXTENSIONS


def title_from_name(name: str) -> str:
    """
    Derive a display title: the file name up to its first dot.

    >>> title_from_name("face.front.jpg")
    'face'
    """
    base = Path(name).name
    return base.split(".")[0] or base


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def _decode(source, name: str, size_bytes: int, fallback_mime: str | None) -> ImageInfo:
    try:
        with Image.open(source) as img:
            img.load()
            width, height = img.size
            mime = Image.MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError(f"Error loading image '{name}': {exc}") from exc

    return ImageInfo(
        width=width,
        height=height,
        size_bytes=size_bytes,
        name=name,
        mime_type=mime or fallback_mime or "application/octet-stream",
    )


def read_image_info(path: str | Path) -> ImageInfo:
    """
    Decode an image file and describe it.

    Raises:
        ImageDecodeError: The file is missing, unreadable or not an image.
    """
    path = Path(path)
    try:
        size_bytes = path.stat().st_size
    except OSError as exc:
        raise ImageDecodeError(f"Error reading file '{path.name}': {exc}") from exc
    guessed_mime, _ = mimetypes.guess_type(path.name)
    return _decode(path, path.name, size_bytes, guessed_mime)


def image_info_from_bytes(data: bytes, name: str) -> ImageInfo:
    """Decode an in-memory image; ``size_bytes`` is the decoded byte count."""
    return _decode(io.BytesIO(data), name, len(data), BASE64_DEFAULT_MIME)


# ---------------------------------------------------------------------------
# Base64
# ---------------------------------------------------------------------------

def encode_file_base64(path: str | Path) -> str:
    """
    Read a file and return its contents as a base64 string (no prefix).

    Raises:
        OSError: The file cannot be read.
    """
    return base64.b64encode(Path(path).read_bytes()).decode("ascii")


def clean_base64(value: str) -> str:
    """Strip whitespace and any ``data:image/...;base64,`` prefix."""
    cleaned = _WHITESPACE_RE.sub("", value or "")
    return _DATA_URL_RE.sub("", cleaned, count=1)


def decode_base64(value: str) -> bytes:
    """
    Decode a (possibly prefixed) base64 string.

    Raises:
        ValueError: The string is empty or not valid base64.
    """
    cleaned = clean_base64(value)
    if not cleaned:
        raise ValueError("Empty base64 string")
    try:
        data = base64.b64decode(cleaned, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64: {exc}") from exc
    if not data:
        raise ValueError("Base64 string decodes to no data")
    return data


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def format_file_size(size_bytes: int) -> str:
    """
    Human-readable size with two decimals above one kilobyte.

    >>> format_file_size(512)
    '512 B'
    >>> format_file_size(2048)
    '2.00 KB'
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.2f} KB"
    return f"{size_bytes / (1024 * 1024):.2f} MB"


def format_resolution(info: ImageInfo) -> str:
    return f"{info.width} x {info.height}"


# ---------------------------------------------------------------------------
# Preview references
# ---------------------------------------------------------------------------

class PreviewStore:
    """
    Allocates and releases temporary preview copies.

    Every :class:`PreviewRef` handed out must come back through
    :meth:`release`; ``live_count`` reports how many are still held.

    Args:
        directory: Where preview files are written.  A private temporary
            directory is created on first use when omitted.  That private
            directory is removed again by :meth:`cleanup`.
    """

    def __init__(self, directory: Path | None = None) -> None:
        self._directory = Path(directory) if directory is not None else None
        self._owns_directory = directory is None
        self._live: dict[str, PreviewRef] = {}
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        if self._directory is None:
            self._directory = Path(tempfile.mkdtemp(prefix="liveness-previews-"))
        self._directory.mkdir(parents=True, exist_ok=True)
        return self._directory

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._live)

    def create_from_file(self, path: str | Path) -> PreviewRef:
        """
        Copy ``path`` into the preview directory.

        Raises:
            OSError: The copy fails.
        """
        path = Path(path)
        ref = self._new_ref(path.suffix.lower())
        shutil.copyfile(path, ref.path)
        return self._track(ref)

    def create_from_bytes(self, data: bytes, suffix: str = ".jpg") -> PreviewRef:
        ref = self._new_ref(suffix)
        ref.path.write_bytes(data)
        return self._track(ref)

    def release(self, ref: PreviewRef | None) -> bool:
        """
        Delete a preview file and forget it.

        Returns:
            ``True`` if this call released ``ref``; ``False`` when it was
            ``None`` or already released.
        """
        if ref is None:
            return False
        with self._lock:
            if ref.released:
                return False
            ref.released = True
            self._live.pop(ref.ref_id, None)
        try:
            ref.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("preview_delete_failed", path=str(ref.path), error=str(exc))
        return True

    def cleanup(self) -> bool:
        """
        Remove the private temporary directory once no preview is held.

        A caller-supplied directory is never removed.  The next preview
        created afterwards gets a fresh temporary directory.

        Returns:
            ``True`` if a directory was removed.
        """
        with self._lock:
            if not self._owns_directory or self._directory is None or self._live:
                return False
            directory, self._directory = self._directory, None
        try:
            shutil.rmtree(directory)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("preview_dir_delete_failed", path=str(directory), error=str(exc))
            return False
        return True

    def _new_ref(self, suffix: str) -> PreviewRef:
        ref_id = str(uuid.uuid4())
        return PreviewRef(ref_id=ref_id, path=self.directory / f"{ref_id}{suffix}")

    def _track(self, ref: PreviewRef) -> PreviewRef:
        with self._lock:
            self._live[ref.ref_id] = ref
        return ref
