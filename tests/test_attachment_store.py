# tests/test_attachment_store.py
"""Tests for the AttachmentStore class."""
import base64
from pathlib import Path

import pytest

from unfold_store.exceptions import (
    DecodeError,
    ErrorCode,
    NotFoundError,
    StorageError,
)
from unfold_store.storage.attachment_store import decode_payload, extension_for_mime

PNG_HEADER = b"\x89PNG\r\n\x1a\n"


def _png_payload(size=10 * 1024):
    data = PNG_HEADER + bytes(i % 251 for i in range(size - len(PNG_HEADER)))
    return data, base64.b64encode(data).decode("ascii")


def _row_count(engine):
    with engine.connect() as conn:
        return conn.exec_driver_sql("SELECT COUNT(*) FROM images").scalar()


class TestHelpers:
    """Tests for payload decoding and extension mapping."""

    @pytest.mark.parametrize(
        "mime_type, extension",
        [
            ("image/png", "png"),
            ("image/jpeg", "jpg"),
            ("image/gif", "gif"),
            ("image/webp", "webp"),
            ("image/svg+xml", "svg"),
            ("application/x-unknown", "jpg"),
            ("", "jpg"),
        ],
    )
    def test_extension_for_mime(self, mime_type, extension):
        assert extension_for_mime(mime_type) == extension

    def test_decode_payload(self):
        assert decode_payload(base64.b64encode(b"hello").decode()) == b"hello"

    @pytest.mark.parametrize("payload", ["not base64!", "abc", "@@@@"])
    def test_decode_malformed_payload(self, payload):
        with pytest.raises(DecodeError) as exc_info:
            decode_payload(payload)
        assert exc_info.value.code == ErrorCode.DECODE_FAILED


class TestUpload:
    """Tests for storing attachments."""

    def test_upload_png(self, attachment_store, images_dir):
        data, payload = _png_payload()
        result = attachment_store.upload("n1", "a.png", payload, "image/png", 10240)

        assert result.size == 10240
        path = Path(result.path)
        assert path.is_absolute()
        assert path.parent == images_dir.resolve()
        assert path.suffix == ".png"
        assert path.read_bytes() == data

        attachment = attachment_store.get(result.id)
        assert attachment.note_id == "n1"
        assert attachment.size == 10240
        assert attachment.mime_type == "image/png"
        assert attachment.file_path == result.path
        assert attachment.filename == path.name

    def test_upload_unknown_mime_falls_back_to_jpg(self, attachment_store):
        payload = base64.b64encode(b"raw").decode()
        result = attachment_store.upload("n1", "x.bin", payload, "image/x-foo", 3)
        assert result.path.endswith(".jpg")

    def test_uploads_never_share_a_file(self, attachment_store):
        payload = base64.b64encode(b"same").decode()
        first = attachment_store.upload("n1", "same.png", payload, "image/png", 4)
        second = attachment_store.upload("n1", "same.png", payload, "image/png", 4)
        assert first.id != second.id
        assert first.path != second.path

    def test_declared_size_is_kept(self, attachment_store):
        payload = base64.b64encode(b"12345").decode()
        result = attachment_store.upload("n1", "a.png", payload, "image/png", 99)
        assert result.size == 99
        assert Path(result.path).stat().st_size == 5

    def test_malformed_payload_writes_nothing(self, attachment_store, engine, images_dir):
        with pytest.raises(DecodeError):
            attachment_store.upload("n1", "a.png", "%%%not-base64%%%", "image/png", 10)
        assert list(images_dir.iterdir()) == []
        assert _row_count(engine) == 0

    def test_failed_insert_removes_blob(self, attachment_store, engine, images_dir):
        with engine.begin() as conn:
            conn.exec_driver_sql("DROP TABLE images")

        _, payload = _png_payload(64)
        with pytest.raises(StorageError) as exc_info:
            attachment_store.upload("n1", "a.png", payload, "image/png", 64)
        assert exc_info.value.code == ErrorCode.STORAGE_WRITE_FAILED
        assert list(images_dir.iterdir()) == []

    def test_images_dir_is_recreated(self, attachment_store, images_dir):
        images_dir.rmdir()
        payload = base64.b64encode(b"img").decode()
        result = attachment_store.upload("n1", "a.png", payload, "image/png", 3)
        assert Path(result.path).is_file()

    def test_list_for_note(self, attachment_store):
        payload = base64.b64encode(b"img").decode()
        a = attachment_store.upload("n1", "a.png", payload, "image/png", 3)
        b = attachment_store.upload("n1", "b.png", payload, "image/png", 3)
        attachment_store.upload("n2", "c.png", payload, "image/png", 3)

        ids = {att.id for att in attachment_store.list_for_note("n1")}
        assert ids == {a.id, b.id}
        assert attachment_store.list_for_note("nobody") == []


class TestFetchAndDelete:
    """Tests for reading and removing attachments."""

    def test_fetch_returns_path(self, attachment_store):
        payload = base64.b64encode(b"img").decode()
        result = attachment_store.upload("n1", "a.png", payload, "image/png", 3)
        assert attachment_store.fetch(result.id) == result.path

    def test_fetch_missing(self, attachment_store):
        with pytest.raises(NotFoundError) as exc_info:
            attachment_store.fetch("ghost")
        assert exc_info.value.code == ErrorCode.ATTACHMENT_NOT_FOUND

    def test_delete_removes_row_and_file(self, attachment_store, engine):
        _, payload = _png_payload()
        result = attachment_store.upload("n1", "a.png", payload, "image/png", 10240)

        attachment_store.delete(result.id)

        assert not Path(result.path).exists()
        assert _row_count(engine) == 0
        with pytest.raises(NotFoundError):
            attachment_store.fetch(result.id)

    def test_delete_missing(self, attachment_store):
        with pytest.raises(NotFoundError):
            attachment_store.delete("ghost")

    def test_delete_tolerates_missing_file(self, attachment_store, engine):
        payload = base64.b64encode(b"img").decode()
        result = attachment_store.upload("n1", "a.png", payload, "image/png", 3)
        Path(result.path).unlink()

        attachment_store.delete(result.id)
        assert _row_count(engine) == 0

    def test_delete_reports_unremovable_file_after_dropping_row(self, attachment_store, engine):
        payload = base64.b64encode(b"img").decode()
        result = attachment_store.upload("n1", "a.png", payload, "image/png", 3)
        blob = Path(result.path)
        blob.unlink()
        blob.mkdir()

        with pytest.raises(StorageError) as exc_info:
            attachment_store.delete(result.id)
        assert exc_info.value.code == ErrorCode.STORAGE_DELETE_FAILED

        assert _row_count(engine) == 0
        with pytest.raises(NotFoundError):
            attachment_store.fetch(result.id)

    def test_delete_leaves_other_attachments(self, attachment_store):
        payload = base64.b64encode(b"img").decode()
        gone = attachment_store.upload("n1", "a.png", payload, "image/png", 3)
        kept = attachment_store.upload("n1", "b.png", payload, "image/png", 3)

        attachment_store.delete(gone.id)
        assert attachment_store.fetch(kept.id) == kept.path
        assert Path(kept.path).is_file()
