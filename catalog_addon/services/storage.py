"""
Upload storage

Admin-uploaded imagery (upsell banners, product shots) is written to an
S3-compatible bucket and addressed by URL afterwards. AWS, Cloudflare R2 and
MinIO all work; set S3_ENDPOINT for anything that is not AWS.
"""
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from catalog_addon.core.config import settings

logger = logging.getLogger(__name__)

# content type -> (extension, leading bytes every such file starts with)
IMAGE_SIGNATURES = {
    "image/png": (".png", b"\x89PNG"),
    "image/jpeg": (".jpg", b"\xff\xd8"),
    "image/gif": (".gif", b"GIF"),
    "image/webp": (".webp", b"RIFF"),
}

ONE_YEAR_CACHE = "public, max-age=31536000"


@dataclass
class UploadResult:
    success: bool
    url: Optional[str] = None
    key: Optional[str] = None
    error: Optional[str] = None
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None

    @classmethod
    def failed(cls, error: str) -> "UploadResult":
        return cls(success=False, error=error)


def clean_filename(filename: str) -> str:
    kept = "".join(c for c in filename if c.isalnum() or c in ".-_")
    return kept.lower() or "upload"


def image_problem(content: bytes, content_type: str, max_size: int) -> Optional[str]:
    """Why an upload is not an acceptable image, or None when it is."""
    if not content:
        return "Empty file"

    signature = IMAGE_SIGNATURES.get(content_type)
    if signature is None:
        allowed = ", ".join(sorted(IMAGE_SIGNATURES))
        return f"Invalid content type: {content_type}. Allowed: {allowed}"

    if len(content) > max_size:
        return (
            f"File too large: {len(content) / 1_048_576:.1f}MB. "
            f"Max: {max_size / 1_048_576:.0f}MB"
        )

    extension, magic = signature
    if not content.startswith(magic):
        return f"Invalid {extension.lstrip('.').upper()} file"
    return None


class StorageService:
    def __init__(self):
        self.bucket = settings.S3_BUCKET
        self.region = settings.S3_REGION
        self.max_size = settings.UPLOAD_MAX_BYTES
        self._s3 = None

    @property
    def s3(self):
        if self._s3 is None:
            options = {
                "region_name": self.region,
                "aws_access_key_id": settings.S3_ACCESS_KEY or None,
                "aws_secret_access_key": settings.S3_SECRET_KEY or None,
                "config": Config(signature_version="s3v4", retries={"max_attempts": 3, "mode": "standard"}),
            }
            if settings.S3_ENDPOINT:
                options["endpoint_url"] = settings.S3_ENDPOINT
            self._s3 = boto3.client("s3", **options)
        return self._s3

    def is_configured(self) -> bool:
        return bool(self.bucket)

    def url_for(self, key: str) -> str:
        if settings.S3_ENDPOINT:
            return f"{settings.S3_ENDPOINT.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def object_key(self, folder: str, filename: str, content: bytes) -> str:
        """<folder>/<yyyymmdd>_<content digest>_<cleaned filename>"""
        day = datetime.now(timezone.utc).strftime("%Y%m%d")
        digest = hashlib.sha256(content).hexdigest()[:10]
        return f"{folder}/{day}_{digest}_{clean_filename(filename)}"

    async def upload_file(
        self,
        content: bytes,
        filename: str,
        content_type: str,
        folder: str = "uploads",
    ) -> UploadResult:
        """
        Validate and store an image.

        Rejected files and bucket errors come back as a failed UploadResult
        rather than raising, so the route decides the HTTP status.
        """
        problem = image_problem(content, content_type, self.max_size)
        if problem:
            logger.info(f"Rejected upload {filename!r}: {problem}")
            return UploadResult.failed(problem)

        key = self.object_key(folder, filename, content)
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
                CacheControl=ONE_YEAR_CACHE,
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(f"Storing {key} in {self.bucket} failed: {code}")
            return UploadResult.failed("Upload failed")

        url = self.url_for(key)
        logger.info(f"Stored upload {key} ({len(content)} bytes)")
        return UploadResult(
            success=True,
            url=url,
            key=key,
            content_type=content_type,
            size_bytes=len(content),
        )

    def object_exists(self, key: str) -> bool:
        try:
            self.s3.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True

    async def delete_file(self, key: str) -> bool:
        """Delete a stored upload. Returns False when there was nothing to delete."""
        if not self.object_exists(key):
            return False
        self.s3.delete_object(Bucket=self.bucket, Key=key)
        logger.info(f"Deleted upload {key}")
        return True
