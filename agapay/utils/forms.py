"""
Multipart helpers: JSON payload form fields and file uploads.
"""

from typing import List, Optional, Type, TypeVar

from fastapi import UploadFile
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from agapay.core.errors import ValidationError
from agapay.services.blob_store import UploadedFile

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_json_form(model: Type[ModelT], raw: str, field: str = "payload") -> ModelT:
    """Validate a JSON-encoded form field against a pydantic model."""
    try:
        return model.model_validate_json(raw)
    except PydanticValidationError as e:
        details = {
            ".".join(str(part) for part in err["loc"]) or field: err["msg"]
            for err in e.errors()
        }
        raise ValidationError(f"Invalid {field}", details)


async def read_upload(upload: Optional[UploadFile]) -> Optional[UploadedFile]:
    if upload is None or not upload.filename:
        return None
    content = await upload.read()
    return UploadedFile(filename=upload.filename, content=content, content_type=upload.content_type)


async def read_uploads(uploads: Optional[List[UploadFile]]) -> List[UploadedFile]:
    files = []
    for upload in uploads or []:
        read = await read_upload(upload)
        if read is not None:
            files.append(read)
    return files
