"""Tests for apix.api.image_store and apix.api.data_store."""

from __future__ import annotations

import asyncio
import base64
import io
import os
from pathlib import Path

import pytest

from apix.api import data_store, image_store
from apix.core.errors import (
    BadUploadError,
    InvalidCategoryError,
    InvalidSegmentError,
    NotFoundError,
)
from apix.core.layout import Category

BASE_URL = "http://localhost:3001"


class _FakeUpload:
    """Minimal async reader standing in for ``fastapi.UploadFile``."""

    def __init__(self, data: bytes) -> None:
        self._buffer = io.BytesIO(data)

    async def read(self, size: int = -1) -> bytes:
        return self._buffer.read(size)


class TestIsAllowedImage:
    @pytest.mark.parametrize(
        ("filename", "content_type"),
        [("a.png", "image/png"), ("b.JPG", "image/jpeg"), ("c.webp", "image/webp")],
    )
    def test_images_accepted(self, filename, content_type):
        """Image extension plus image MIME type is accepted."""
        assert image_store.is_allowed_image(filename, content_type)

    @pytest.mark.parametrize(
        ("filename", "content_type"),
        [
            ("a.txt", "text/plain"),
            ("a.png", "application/pdf"),
            ("a.pdf", "image/png"),
            ("noext", "image/png"),
            (None, "image/png"),
            ("a.png", None),
            ("a.pngx", "image/png"),
            ("page.html", "image/png"),
        ],
    )
    def test_non_images_rejected(self, filename, content_type):
        """Either part not looking like an image is enough to reject."""
        assert not image_store.is_allowed_image(filename, content_type)


class TestUploadDirectory:
    def test_category_root(self, ready_layout):
        """An empty subfolder means the category root."""
        directory = image_store.upload_directory(ready_layout, "gallery", "")
        assert directory == ready_layout.root / "gallery"

    def test_creates_subfolder(self, ready_layout):
        """A subfolder is created on demand."""
        directory = image_store.upload_directory(ready_layout, Category.HISTORY, "batch7")
        assert directory == ready_layout.root / "history" / "batch7"
        assert directory.is_dir()

    def test_unknown_category(self, ready_layout):
        """An unknown category is rejected."""
        with pytest.raises(InvalidCategoryError):
            image_store.upload_directory(ready_layout, "uploads", "")

    def test_unsanitised_subfolder_rejected(self, ready_layout):
        """Subfolders must already be sanitised."""
        with pytest.raises(InvalidSegmentError):
            image_store.upload_directory(ready_layout, "gallery", "../x")


class TestSaveImageBytes:
    def test_writes_file(self, temp_dir: Path):
        """Bytes are written under the requested name."""
        path = image_store.save_image_bytes(temp_dir, "a.png", b"data")
        assert path == temp_dir / "a.png"
        assert path.read_bytes() == b"data"

    def test_never_overwrites(self, temp_dir: Path):
        """A taken name gets a suffix instead of being overwritten."""
        (temp_dir / "a.png").write_bytes(b"old")
        path = image_store.save_image_bytes(temp_dir, "a.png", b"new")
        assert path.name == "a-1.png"
        assert (temp_dir / "a.png").read_bytes() == b"old"

    @pytest.mark.parametrize("filename", ["../a.png", "a/b.png", "", ".."])
    def test_rejects_unsafe_names(self, temp_dir: Path, filename):
        """Names that are not a single safe segment are rejected."""
        with pytest.raises(InvalidSegmentError):
            image_store.save_image_bytes(temp_dir, filename, b"x")


class TestSaveUploadStream:
    def test_streams_to_generated_name(self, temp_dir: Path):
        """Multi-chunk uploads are written in full under a generated name."""
        payload = os.urandom(3 * image_store.UPLOAD_CHUNK_SIZE + 17)
        path = asyncio.run(
            image_store.save_upload_stream(temp_dir, _FakeUpload(payload), "photo.jpg", len(payload))
        )
        assert path.parent == temp_dir
        assert path.name.startswith("img-")
        assert path.suffix == ".jpg"
        assert path.read_bytes() == payload

    def test_oversized_upload_removed(self, temp_dir: Path):
        """An upload over the limit fails and leaves no file."""
        with pytest.raises(BadUploadError):
            asyncio.run(
                image_store.save_upload_stream(temp_dir, _FakeUpload(b"x" * 11), "a.png", 10)
            )
        assert list(temp_dir.iterdir()) == []


class TestDecodeDataUrl:
    def test_valid(self, png_bytes):
        """A PNG data URL decodes to its extension and bytes."""
        url = "data:image/png;base64," + base64.b64encode(png_bytes).decode()
        assert image_store.decode_data_url(url) == ("png", png_bytes)

    @pytest.mark.parametrize(
        "value",
        [
            "not a data url",
            "data:text/plain;base64,aGVsbG8=",
            "data:image/png,raw",
            "data:image/png;base64,@@@",
            "data:image/html;base64,PHNjcmlwdD4=",
            "data:image/svg;base64,PHN2Zz4=",
        ],
    )
    def test_invalid(self, value):
        """Malformed, non-image or undecodable values are rejected."""
        with pytest.raises(BadUploadError):
            image_store.decode_data_url(value)

    def test_subtype_is_lowercased(self, png_bytes):
        """``image/PNG`` is accepted and reported as ``png``."""
        url = "data:image/PNG;base64," + base64.b64encode(png_bytes).decode()
        assert image_store.decode_data_url(url) == ("png", png_bytes)


class TestRequireImageFilename:
    @pytest.mark.parametrize("filename", ["a.png", "B.JPEG", "c.final.webp"])
    def test_image_names_accepted(self, filename):
        """Names with an image extension pass through unchanged."""
        assert image_store.require_image_filename(filename) == filename

    @pytest.mark.parametrize("filename", ["x.html", "x.png.html", "noext", "x.svg"])
    def test_other_names_rejected(self, filename):
        """Anything else is a bad upload."""
        with pytest.raises(BadUploadError):
            image_store.require_image_filename(filename)


class TestListImages:
    def test_empty_category(self, ready_layout):
        """A fresh category lists nothing."""
        assert image_store.list_images(ready_layout, "history", BASE_URL) == []

    def test_recursive_listing_newest_first(self, ready_layout):
        """Images from all subfolders are listed newest first."""
        gallery = ready_layout.category_dirs[Category.GALLERY]
        old = gallery / "old.png"
        new = gallery / "upload" / "new.jpg"
        old.write_bytes(b"o")
        new.write_bytes(b"n")
        (gallery / "notes.txt").write_text("ignored")
        os.utime(old, (1_000_000, 1_000_000))
        os.utime(new, (2_000_000, 2_000_000))

        images = image_store.list_images(ready_layout, "gallery", BASE_URL)

        assert [image["filename"] for image in images] == ["new.jpg", "old.png"]
        assert images[0]["subfolder"] == "upload"
        assert images[0]["url"] == f"{BASE_URL}/gallery/upload/new.jpg"
        assert images[0]["mtime"] == 2_000_000_000
        assert images[0]["path"] == str(new)
        assert images[1]["subfolder"] == ""
        assert images[1]["url"] == f"{BASE_URL}/gallery/old.png"

    def test_skips_files_without_a_valid_url(self, ready_layout):
        """Names the resolver would reject are not listed."""
        gallery = ready_layout.category_dirs[Category.GALLERY]
        (gallery / "ok.png").write_bytes(b"o")
        (gallery / "with space.png").write_bytes(b"s")
        (gallery / "v1.2").mkdir()
        (gallery / "v1.2" / "inside.png").write_bytes(b"i")

        images = image_store.list_images(ready_layout, "gallery", BASE_URL)

        assert [image["filename"] for image in images] == ["ok.png"]

    def test_unknown_category(self, ready_layout):
        """An unknown category is rejected."""
        with pytest.raises(InvalidCategoryError):
            image_store.list_images(ready_layout, "data", BASE_URL)


class TestDeleteFile:
    def test_deletes(self, temp_dir: Path):
        """An existing file is removed."""
        target = temp_dir / "a.png"
        target.write_bytes(b"x")
        image_store.delete_file(target)
        assert not target.exists()

    def test_missing(self, temp_dir: Path):
        """Deleting a missing file is NotFound."""
        with pytest.raises(NotFoundError):
            image_store.delete_file(temp_dir / "missing.png")

    def test_directory_is_not_a_file(self, temp_dir: Path):
        """Directories are never deleted as images."""
        with pytest.raises(NotFoundError):
            image_store.delete_file(temp_dir)


class TestDataStore:
    def test_save_and_load(self, ready_layout):
        """A saved document loads back unchanged."""
        data_store.save_document(ready_layout.data_dir, "history.json", {"items": [1, 2]})
        assert data_store.load_document(ready_layout.data_dir, "history.json") == {"items": [1, 2]}

    def test_save_overwrites(self, ready_layout):
        """Saving again replaces the document."""
        data_store.save_document(ready_layout.data_dir, "s.json", {"a": 1})
        data_store.save_document(ready_layout.data_dir, "s.json", {"b": 2})
        assert data_store.load_document(ready_layout.data_dir, "s.json") == {"b": 2}

    def test_indented_output(self, ready_layout):
        """Documents are written with two-space indentation."""
        path = data_store.save_document(ready_layout.data_dir, "s.json", {"a": 1})
        assert path.read_text(encoding="utf-8") == '{\n  "a": 1\n}'

    def test_name_is_sanitised(self, ready_layout):
        """Disallowed characters are stripped from the name."""
        path = data_store.save_document(ready_layout.data_dir, "my file!.json", [])
        assert path == ready_layout.data_dir / "myfile.json"

    @pytest.mark.parametrize("filename", ["..", "../secret", "...", "!!!", ""])
    def test_unsafe_names_rejected(self, ready_layout, filename):
        """Names with nothing usable or with .. are rejected."""
        with pytest.raises(InvalidSegmentError):
            data_store.save_document(ready_layout.data_dir, filename, {})

    def test_load_missing(self, ready_layout):
        """Loading a missing document is NotFound."""
        with pytest.raises(NotFoundError):
            data_store.load_document(ready_layout.data_dir, "missing.json")

    def test_delete(self, ready_layout):
        """A document can be deleted once."""
        data_store.save_document(ready_layout.data_dir, "s.json", {})
        data_store.delete_document(ready_layout.data_dir, "s.json")
        with pytest.raises(NotFoundError):
            data_store.delete_document(ready_layout.data_dir, "s.json")
