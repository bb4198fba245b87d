"""
Shared pytest fixtures for the identity client and evaluation pipeline tests.

Images are generated with Pillow into ``tmp_path`` so every test works on
real, decodable files.  HTTP responses are real ``requests.Response``
objects with the body injected, so ``.json()`` and ``.status_code`` behave
exactly as they do against the live API.
"""

from __future__ import annotations

import base64
import io
import json
from pathlib import Path

import pytest
import requests
from PIL import Image

from src.evaluation.images import PreviewStore
from src.evaluation.pipeline import PipelineObserver
from src.identity_client.session import IdentityClientState
from src.identity_client.storage import MemoryStorage

TEST_API_KEY = "test-api-key-1234"

# Pillow format name for each extension used in the tests
_FORMATS = {
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".png": "PNG",
    ".bmp": "BMP",
    ".gif": "GIF",
    ".webp": "WEBP",
}


# ---------------------------------------------------------------------------
# Image builders
# ---------------------------------------------------------------------------

def make_image(directory: Path, name: str, size: tuple[int, int] = (64, 48)) -> Path:
    """Write a solid-colour image whose format matches ``name``'s extension."""
    path = directory / name
    fmt = _FORMATS[path.suffix.lower()]
    Image.new("RGB", size, color=(120, 80, 200)).save(path, format=fmt)
    return path


def make_base64_image(size: tuple[int, int] = (32, 16)) -> str:
    """Return a JPEG encoded as base64 (no prefix)."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(10, 200, 30)).save(buffer, format="JPEG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


# ---------------------------------------------------------------------------
# HTTP responses
# ---------------------------------------------------------------------------

def make_response(
    status: int = 200,
    body: dict | list | None = None,
    reason: str = "OK",
    raw: bytes | None = None,
) -> requests.Response:
    """Build a ``requests.Response`` with a JSON (or raw) body."""
    response = requests.Response()
    response.status_code = status
    response.reason = reason
    if raw is not None:
        response._content = raw
    elif body is not None:
        response._content = json.dumps(body).encode("utf-8")
    else:
        response._content = b""
    return response


# ---------------------------------------------------------------------------
# Observers
# ---------------------------------------------------------------------------

class RecordingObserver(PipelineObserver):
    """Keeps every notification as ``(hook, args)`` tuples."""

    def __init__(self) -> None:
        self.events: list[tuple] = []

    def on_start(self, total):
        self.events.append(("start", total))

    def on_phase(self, index, source_ref, phase):
        self.events.append(("phase", source_ref, phase))

    def on_item(self, index, item):
        self.events.append(("item", item.source_ref))

    def on_complete(self, count, elapsed_seconds):
        self.events.append(("complete", count))

    def on_failed(self, error):
        self.events.append(("failed", type(error).__name__))

    def hooks(self, name: str) -> list[tuple]:
        return [e for e in self.events if e[0] == name]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def client_state(monkeypatch):
    """Hydrated in-memory state with the default endpoint and a credential."""
    monkeypatch.delenv("IDENTITY_API_KEY", raising=False)
    state = IdentityClientState(MemoryStorage()).init()
    state.credential.set(TEST_API_KEY)
    return state


@pytest.fixture
def previews(tmp_path):
    return PreviewStore(tmp_path / "previews")


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def image_dir(tmp_path):
    directory = tmp_path / "images"
    directory.mkdir()
    return directory
