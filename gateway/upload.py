from __future__ import annotations

from fastapi import HTTPException, UploadFile

from common.config import GatewaySettings
from pipeline.formats import file_extension, mime_type_for
from pipeline.models import AudioAsset


class UploadRejected(ValueError):
    pass


def validate_upload(file_name: str, size: int, settings: GatewaySettings) -> None:
    """Enforce the upload constraints before anything reaches the pipeline."""
    if not file_name:
        raise UploadRejected("No audio file was provided")
    if size > settings.max_file_size_bytes:
        raise UploadRejected(f"File size exceeds {settings.max_file_size_mb}MB")
    allowed = [ext.lower() for ext in settings.allowed_extensions]
    if file_extension(file_name) not in allowed:
        names = ", ".join(ext.lstrip(".").upper() for ext in allowed)
        raise UploadRejected(f"Unsupported file format. Please choose one of: {names}")
    if size == 0:
        raise UploadRejected("The uploaded audio file is empty")


def build_asset(file_name: str, data: bytes, settings: GatewaySettings, mime_type: str | None = None) -> AudioAsset:
    validate_upload(file_name, len(data), settings)
    return AudioAsset(data=data, mime_type=mime_type or mime_type_for(file_name), file_name=file_name)


async def read_upload(upload: UploadFile | None, settings: GatewaySettings) -> AudioAsset:
    if upload is None or not upload.filename:
        raise HTTPException(status_code=400, detail="No audio file was provided")
    if upload.size is not None and upload.size > settings.max_file_size_bytes:
        raise HTTPException(status_code=400, detail=f"File size exceeds {settings.max_file_size_mb}MB")
    data = await upload.read()
    try:
        return build_asset(upload.filename, data, settings)
    except UploadRejected as exc:
        raise HTTPException(status_code=400, detail=str(exc))
