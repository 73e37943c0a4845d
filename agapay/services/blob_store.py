"""
Blob Store - media uploads to Firebase Storage.

upload(file, folder) -> MediaRef(url, public_id)
delete(public_id)    -> bool, never raises
"""

import logging
import mimetypes
import os
import uuid
from dataclasses import dataclass
from typing import Iterable, List, Optional

from firebase_admin import storage
from google.api_core import exceptions as gexc

from agapay.config.firebase import initialize_firebase
from agapay.core.errors import StorageFailure, ValidationError
from agapay.models.base import MediaRef

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
ALLOWED_PREFIXES = ("image/", "video/")


@dataclass
class UploadedFile:
    """An upload read off the request, independent of the web framework."""
    filename: str
    content: bytes
    content_type: Optional[str] = None

    def resolved_content_type(self) -> str:
        return self.content_type or mimetypes.guess_type(self.filename)[0] or "application/octet-stream"


def validate_upload(upload: UploadedFile, field: str) -> None:
    if not upload.content:
        raise ValidationError("Uploaded file is empty", {field: "empty file"})
    if len(upload.content) > MAX_UPLOAD_BYTES:
        raise ValidationError("Uploaded file is too large", {field: f"max {MAX_UPLOAD_BYTES} bytes"})
    if not upload.resolved_content_type().startswith(ALLOWED_PREFIXES):
        raise ValidationError("Only image and video uploads are allowed", {field: upload.resolved_content_type()})


class FirebaseBlobStore:
    def __init__(self, bucket=None):
        if bucket is None:
            initialize_firebase()
            bucket = storage.bucket()
        self.bucket = bucket

    def upload(self, upload: UploadedFile, folder: str) -> MediaRef:
        extension = os.path.splitext(upload.filename or "")[1].lower()
        blob_name = f"{folder.strip('/')}/{uuid.uuid4().hex}{extension}"
        blob = self.bucket.blob(blob_name)
        try:
            blob.upload_from_string(upload.content, content_type=upload.resolved_content_type())
            blob.make_public()
        except gexc.GoogleAPICallError as e:
            logger.error(f"Blob upload failed for {blob_name}: {e}", exc_info=True)
            raise StorageFailure("Failed to upload media")
        logger.info(f"Uploaded blob {blob_name} ({len(upload.content)} bytes)")
        return MediaRef(url=blob.public_url, public_id=blob_name)

    def delete(self, public_id: str) -> bool:
        if not public_id:
            return False
        try:
            self.bucket.blob(public_id).delete()
            logger.info(f"Deleted blob {public_id}")
            return True
        except gexc.NotFound:
            logger.warning(f"Blob {public_id} already gone")
            return False
        except gexc.GoogleAPICallError as e:
            logger.warning(f"Failed to delete blob {public_id}: {e}")
            return False

    def delete_many(self, public_ids: Iterable[str]) -> List[str]:
        """Best-effort bulk delete; returns the ids that could not be deleted."""
        return [public_id for public_id in public_ids if public_id and not self.delete(public_id)]


_blob_store: Optional[FirebaseBlobStore] = None


def get_blob_store() -> FirebaseBlobStore:
    global _blob_store
    if _blob_store is None:
        _blob_store = FirebaseBlobStore()
    return _blob_store
