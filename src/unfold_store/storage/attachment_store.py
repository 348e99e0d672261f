"""Attachment storage: image blobs on disk bound to rows in the images table.

The blob and its row live in two substrates that cannot share a
transaction, so every operation orders its two steps such that a failure
half-way leaves a blob without a row, never a row without a blob:

- upload writes the blob, then inserts the row
- delete removes the row, then unlinks the blob
"""
import base64
import binascii
import logging
import uuid
from pathlib import Path
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from unfold_store.config import config
from unfold_store.exceptions import (
    DecodeError,
    ErrorCode,
    NotFoundError,
    StorageError,
)
from unfold_store.models.db_models import DBImage, get_session_factory
from unfold_store.models.schema import (
    Attachment,
    UploadResult,
    format_timestamp,
    generate_id,
    parse_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

EXTENSION_BY_MIME = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
}
DEFAULT_EXTENSION = "jpg"


def extension_for_mime(mime_type: str) -> str:
    """Map a MIME type to the blob file extension; unknown types get ``jpg``."""
    return EXTENSION_BY_MIME.get(mime_type, DEFAULT_EXTENSION)


def decode_payload(base64_data: str) -> bytes:
    """Decode the base64 transport encoding of an upload.

    Raises:
        DecodeError: If the payload is not valid standard base64.
    """
    try:
        return base64.b64decode(base64_data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError("Failed to decode base64 image data", original_error=e) from e


class AttachmentStore:
    """Stores image attachments as ``<images_dir>/<uuid>.<ext>`` plus metadata rows."""

    def __init__(self, engine=None, images_dir: Optional[Path] = None):
        """Initialize the store.

        Args:
            engine: Migrated store engine. If None, opens the configured store.
            images_dir: Blob directory. If None, resolved from config on each
                upload so it is (re)created on demand.
        """
        self.session_factory = get_session_factory(engine)
        self._images_dir = Path(images_dir) if images_dir else None
        logger.info("AttachmentStore initialized")

    @property
    def images_dir(self) -> Path:
        """Blob directory, created if it does not exist yet."""
        if self._images_dir is None:
            return config.get_images_dir()
        self._images_dir.mkdir(parents=True, exist_ok=True)
        return self._images_dir

    def upload(
        self,
        note_id: str,
        file_name: str,
        base64_data: str,
        mime_type: str,
        size: int,
    ) -> UploadResult:
        """Store an image for a note.

        Args:
            note_id: Note the image belongs to.
            file_name: Client-side name, used for logging only; the blob gets
                a generated name so uploads never overwrite each other.
            base64_data: Image bytes in standard base64.
            mime_type: Image MIME type, selects the file extension.
            size: Size in bytes as reported by the client.

        Returns:
            The new attachment's id, absolute blob path and size.

        Raises:
            DecodeError: Malformed base64.
            StorageError: Directory, blob or row write failed.
        """
        data = decode_payload(base64_data)
        if len(data) != size:
            logger.warning(
                f"Declared size {size} for '{file_name}' differs from decoded size {len(data)}"
            )

        try:
            images_dir = self.images_dir
        except OSError as e:
            raise StorageError(
                "Failed to create images directory",
                operation="upload",
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

        unique_filename = f"{uuid.uuid4()}.{extension_for_mime(mime_type)}"
        file_path = (images_dir / unique_filename).resolve()

        # Step 1: blob
        try:
            file_path.write_bytes(data)
        except OSError as e:
            raise StorageError(
                "Failed to write image file",
                operation="upload",
                path=str(file_path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

        # Step 2: row
        attachment_id = generate_id()
        try:
            with self.session_factory() as session:
                session.add(
                    DBImage(
                        id=attachment_id,
                        note_id=note_id,
                        filename=unique_filename,
                        file_path=str(file_path),
                        size=str(size),
                        mime_type=mime_type,
                        created_at=format_timestamp(utc_now()),
                    )
                )
                session.commit()
        except SQLAlchemyError as e:
            self._discard_blob(file_path)
            raise StorageError(
                "Failed to insert image metadata",
                operation="upload",
                path=str(file_path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

        logger.info(f"Stored image {attachment_id} for note {note_id} ({size} bytes)")
        return UploadResult(id=attachment_id, path=str(file_path), size=size)

    def fetch(self, attachment_id: str) -> str:
        """Return the absolute blob path of an attachment.

        Raises:
            NotFoundError: If no row has this ID.
        """
        with self.session_factory() as session:
            path = session.scalar(
                select(DBImage.file_path).where(DBImage.id == attachment_id)
            )
        if path is None:
            raise NotFoundError("attachment", attachment_id)
        return path

    def get(self, attachment_id: str) -> Attachment:
        """Return the full metadata of an attachment."""
        with self.session_factory() as session:
            db_image = session.get(DBImage, attachment_id)
            if db_image is None:
                raise NotFoundError("attachment", attachment_id)
            return self._db_image_to_model(db_image)

    def list_for_note(self, note_id: str) -> List[Attachment]:
        """Return all attachments of a note, oldest first."""
        with self.session_factory() as session:
            result = session.execute(
                select(DBImage)
                .where(DBImage.note_id == note_id)
                .order_by(DBImage.created_at, DBImage.id)
            )
            return [self._db_image_to_model(db) for db in result.scalars().all()]

    def delete(self, attachment_id: str) -> None:
        """Delete an attachment's row, then its blob.

        Raises:
            NotFoundError: If no row has this ID.
            StorageError: If the row delete or blob unlink fails. When the
                unlink fails the row is already gone and the blob is orphaned.
        """
        with self.session_factory() as session:
            path = session.scalar(
                select(DBImage.file_path).where(DBImage.id == attachment_id)
            )
            if path is None:
                raise NotFoundError("attachment", attachment_id)
            try:
                session.execute(delete(DBImage).where(DBImage.id == attachment_id))
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(
                    "Failed to delete image metadata",
                    operation="delete",
                    code=ErrorCode.STORAGE_DELETE_FAILED,
                    original_error=e,
                ) from e

        try:
            Path(path).unlink()
        except FileNotFoundError:
            logger.warning(f"Image file for {attachment_id} was already missing: {path}")
        except OSError as e:
            raise StorageError(
                "Failed to delete image file",
                operation="delete",
                path=path,
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e

        logger.info(f"Deleted image {attachment_id}")

    @staticmethod
    def _discard_blob(file_path: Path) -> None:
        """Best-effort removal of a blob whose row could not be written."""
        try:
            file_path.unlink()
        except OSError as e:
            logger.warning(f"Could not remove orphaned image file {file_path}: {e}")

    @staticmethod
    def _db_image_to_model(db_image: DBImage) -> Attachment:
        return Attachment(
            id=db_image.id,
            note_id=db_image.note_id,
            filename=db_image.filename,
            file_path=db_image.file_path,
            size=int(db_image.size),
            mime_type=db_image.mime_type,
            created_at=parse_timestamp(db_image.created_at),
        )
