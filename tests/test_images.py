"""
Unit tests for src/evaluation/images.py.

Covers:
- Extension filtering and title derivation.
- Pillow decoding of files and in-memory buffers.
- Base64 cleaning/decoding of prefixed and malformed input.
- Size and resolution formatting.
- PreviewStore allocation, exactly-once release and directory cleanup.
"""

from __future__ import annotations

import base64

import pytest

from src.evaluation.images import (
    ImageDecodeError,
    PreviewStore,
    clean_base64,
    decode_base64,
    encode_file_base64,
    format_file_size,
    format_resolution,
    image_info_from_bytes,
    is_supported_image,
    read_image_info,
    title_from_name,
)
from src.evaluation.models import ImageInfo

from .conftest import make_base64_image, make_image


# ---------------------------------------------------------------------------
# Input filtering
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("name,expected", [
    ("face.jpg", True),
    ("FACE.JPEG", True),
    ("scan.png", True),
    ("anim.gif", True),
    ("photo.webp", True),
    ("old.bmp", True),
    ("notes.txt", False),
    ("archive.tar.gz", False),
    ("no_extension", False),
])
def test_is_supported_image(name, expected):
    assert is_supported_image(name) is expected


@pytest.mark.parametrize("name,expected", [
    ("face.jpg", "face"),
    ("face.front.jpg", "face"),
    ("/tmp/dir/selfie.png", "selfie"),
    (".hidden.png", ".hidden.png"),
])
def test_title_from_name(name, expected):
    assert title_from_name(name) == expected


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

class TestDecoding:

    def test_read_image_info(self, image_dir):
        path = make_image(image_dir, "face.png", size=(640, 480))
        info = read_image_info(path)

        assert (info.width, info.height) == (640, 480)
        assert info.size_bytes == path.stat().st_size
        assert info.name == "face.png"
        assert info.mime_type == "image/png"

    def test_corrupt_file_raises_decode_error(self, image_dir):
        path = image_dir / "broken.jpg"
        path.write_bytes(b"definitely not a jpeg")
        with pytest.raises(ImageDecodeError):
            read_image_info(path)

    def test_missing_file_raises_decode_error(self, image_dir):
        with pytest.raises(ImageDecodeError):
            read_image_info(image_dir / "missing.jpg")

    def test_info_from_bytes(self):
        data = base64.b64decode(make_base64_image(size=(32, 16)))
        info = image_info_from_bytes(data, "base64_image_1.jpg")
        assert (info.width, info.height) == (32, 16)
        assert info.size_bytes == len(data)
        assert info.mime_type == "image/jpeg"

    def test_encode_file_base64_round_trips_bytes(self, image_dir):
        path = make_image(image_dir, "a.jpg")
        assert base64.b64decode(encode_file_base64(path)) == path.read_bytes()


# ---------------------------------------------------------------------------
# Base64
# ---------------------------------------------------------------------------

class TestBase64:

    def test_clean_strips_data_url_prefix_and_whitespace(self):
        assert clean_base64("data:image/jpeg;base64,AA\nBB \n") == "AABB"

    def test_clean_leaves_plain_value(self):
        assert clean_base64("QUJD") == "QUJD"

    def test_decode_prefixed(self):
        assert decode_base64("data:image/png;base64,QUJD") == b"ABC"

    @pytest.mark.parametrize("value", ["", "   ", "not base64!!", "QUJ"])
    def test_decode_rejects_bad_input(self, value):
        with pytest.raises(ValueError):
            decode_base64(value)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("size,expected", [
    (0, "0 B"),
    (1023, "1023 B"),
    (1024, "1.00 KB"),
    (12800, "12.50 KB"),
    (1024 * 1024, "1.00 MB"),
    (5 * 1024 * 1024 + 512 * 1024, "5.50 MB"),
])
def test_format_file_size(size, expected):
    assert format_file_size(size) == expected


def test_format_resolution():
    info = ImageInfo(width=640, height=480, size_bytes=1, name="x", mime_type="image/jpeg")
    assert format_resolution(info) == "640 x 480"


# ---------------------------------------------------------------------------
# Previews
# ---------------------------------------------------------------------------

class TestPreviewStore:

    def test_create_from_file_copies(self, image_dir, previews):
        path = make_image(image_dir, "a.jpg")
        ref = previews.create_from_file(path)

        assert ref.path.exists()
        assert ref.path.read_bytes() == path.read_bytes()
        assert ref.path.suffix == ".jpg"
        assert previews.live_count == 1

    def test_release_exactly_once(self, previews):
        ref = previews.create_from_bytes(b"abc")

        assert previews.release(ref) is True
        assert previews.release(ref) is False
        assert ref.released is True
        assert not ref.path.exists()
        assert previews.live_count == 0

    def test_release_none(self, previews):
        assert previews.release(None) is False

    def test_default_directory_is_created(self):
        store = PreviewStore()
        ref = store.create_from_bytes(b"abc", ".png")
        try:
            assert ref.path.parent.is_dir()
        finally:
            store.release(ref)
            store.cleanup()

    def test_cleanup_removes_private_directory(self):
        store = PreviewStore()
        ref = store.create_from_bytes(b"abc")
        directory = ref.path.parent

        assert store.cleanup() is False  # a preview is still held
        assert directory.is_dir()

        store.release(ref)
        assert store.cleanup() is True
        assert not directory.exists()

        # A later preview gets a new directory
        again = store.create_from_bytes(b"def")
        assert again.path.parent != directory
        store.release(again)
        store.cleanup()

    def test_cleanup_keeps_supplied_directory(self, previews):
        ref = previews.create_from_bytes(b"abc")
        previews.release(ref)
        assert previews.cleanup() is False
        assert ref.path.parent.is_dir()
