"""
Upload API Routes

Admin file uploads to the S3-compatible store. The returned URL is what
gets saved on catalog records.
"""
import logging
from typing import List

from botocore.exceptions import ClientError
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from catalog_addon.api.deps import CurrentUser, get_current_admin
from catalog_addon.core.config import settings
from catalog_addon.schemas.upsell import UploadResponse
from catalog_addon.services.storage import StorageService, image_problem

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/uploads", tags=["uploads"])


def get_storage() -> StorageService:
    return StorageService()


def require_configured(storage: StorageService) -> None:
    if not storage.is_configured():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage not configured. Set S3_BUCKET and credentials."
        )


async def store(storage: StorageService, file: UploadFile, content: bytes) -> UploadResponse:
    result = await storage.upload_file(
        content=content,
        filename=file.filename or "upload",
        content_type=file.content_type or "application/octet-stream",
    )
    if not result.success or not result.url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error or "Upload failed")

    return UploadResponse(
        url=result.url,
        key=result.key,
        content_type=result.content_type,
        size_bytes=result.size_bytes,
    )


@router.post("/", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(...),
    storage: StorageService = Depends(get_storage),
    current_user: CurrentUser = Depends(get_current_admin),
):
    """Upload an image and return its public URL and storage key."""
    require_configured(storage)

    uploaded = await store(storage, file, await file.read())
    logger.info(f"Admin {current_user.id} uploaded {uploaded.key} ({uploaded.size_bytes} bytes)")
    return uploaded


@router.post("/multiple", response_model=List[UploadResponse], status_code=status.HTTP_201_CREATED)
async def upload_files(
    files: List[UploadFile] = File(...),
    storage: StorageService = Depends(get_storage),
    current_user: CurrentUser = Depends(get_current_admin),
):
    """
    Upload several images at once.

    Every file is checked before any is stored, so one bad file rejects the
    whole batch.
    """
    require_configured(storage)

    if len(files) > settings.UPLOAD_MAX_FILES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Too many files. Maximum {settings.UPLOAD_MAX_FILES} files allowed."
        )

    contents = [await file.read() for file in files]
    for file, content in zip(files, contents):
        problem = image_problem(content, file.content_type or "application/octet-stream", storage.max_size)
        if problem:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{file.filename}: {problem}")

    uploaded = [await store(storage, file, content) for file, content in zip(files, contents)]
    logger.info(f"Admin {current_user.id} uploaded {len(uploaded)} files")
    return uploaded


@router.delete("/{key:path}")
async def delete_file(
    key: str,
    storage: StorageService = Depends(get_storage),
    current_user: CurrentUser = Depends(get_current_admin),
):
    """Delete a stored upload by its key."""
    require_configured(storage)

    try:
        deleted = await storage.delete_file(key)
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "Unknown")
        logger.error(f"Deleting {key} failed: {code}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Delete failed")

    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    logger.info(f"Admin {current_user.id} deleted upload {key}")
    return {"success": True, "message": "File deleted successfully", "key": key}
