"""
Upload validation and routing to the media storage folders
"""
from typing import Optional
import re

import structlog

from crowdfund.core.errors import PayloadTooLargeError, ValidationError
from crowdfund.schemas.upload import UploadResponse
from crowdfund.services.media_client import MediaStorage

logger = structlog.get_logger(__name__)

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
ALLOWED_DOCUMENT_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

_VERSION_SEGMENT = re.compile(r"^v\d+$")


def extract_public_id(url: Optional[str]) -> Optional[str]:
    """
    Recover the storage public id from a delivery URL.

    ``https://res.cloudinary.com/demo/image/upload/v1712/fundizen/campaigns/abc.jpg``
    yields ``fundizen/campaigns/abc``.
    """
    if not url or "cloudinary.com" not in url:
        return None

    parts = url.split("/")
    if "upload" not in parts:
        return None

    start = parts.index("upload") + 1
    if start < len(parts) and _VERSION_SEGMENT.match(parts[start]):
        start += 1
    if start >= len(parts):
        return None

    public_id = "/".join(parts[start:])
    dot = public_id.rfind(".")
    if dot > 0:
        public_id = public_id[:dot]
    return public_id or None


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


class UploadService:
    """Validates files and stores them in the right folder"""

    def __init__(self, storage: MediaStorage, root_folder: str = "fundizen", max_bytes: int = 10 * 1024 * 1024):
        self.storage = storage
        self.root_folder = root_folder
        self.max_bytes = max_bytes

    def _validate(self, content: bytes, content_type: Optional[str], allowed: set, kind: str):
        if not content:
            raise ValidationError("File cannot be empty")
        if content_type not in allowed:
            raise ValidationError(
                f"Invalid {kind} type: {content_type}. Allowed types: {', '.join(sorted(allowed))}"
            )
        if len(content) > self.max_bytes:
            raise PayloadTooLargeError(
                f"File size too large: {format_size(len(content))}. Maximum size: {format_size(self.max_bytes)}"
            )

    def _store(self, content, content_type, filename, folder, resource_type, tags) -> UploadResponse:
        full_folder = f"{self.root_folder}/{folder}"
        result = self.storage.upload(
            content,
            content_type,
            folder=full_folder,
            resource_type=resource_type,
            tags=tags,
        )
        logger.info("File uploaded", folder=full_folder, filename=filename, size=format_size(len(content)))
        return UploadResponse(
            url=result["url"],
            public_id=result.get("public_id"),
            folder=full_folder,
            filename=filename,
            content_type=content_type,
            size=len(content),
        )

    def upload_campaign_image(self, content: bytes, content_type: str, filename: str = None) -> UploadResponse:
        self._validate(content, content_type, ALLOWED_IMAGE_TYPES, "image")
        return self._store(content, content_type, filename, "campaigns", "image", ["campaign", "image"])

    def upload_campaign_document(self, content: bytes, content_type: str, filename: str = None) -> UploadResponse:
        self._validate(content, content_type, ALLOWED_DOCUMENT_TYPES, "document")
        return self._store(content, content_type, filename, "documents", "raw", ["campaign", "document"])

    def upload_profile_image(self, content: bytes, content_type: str, filename: str = None) -> UploadResponse:
        self._validate(content, content_type, ALLOWED_IMAGE_TYPES, "image")
        return self._store(content, content_type, filename, "profiles", "image", ["profile", "image"])

    def upload_file(self, content: bytes, content_type: str, filename: str = None) -> UploadResponse:
        """Route by content type: images to campaigns, documents to documents"""
        if content_type in ALLOWED_IMAGE_TYPES:
            return self.upload_campaign_image(content, content_type, filename)
        if content_type in ALLOWED_DOCUMENT_TYPES:
            return self.upload_campaign_document(content, content_type, filename)
        raise ValidationError(
            f"Unsupported file type: {content_type}. Allowed types: "
            f"{', '.join(sorted(ALLOWED_IMAGE_TYPES | ALLOWED_DOCUMENT_TYPES))}"
        )

    def delete_by_url(self, url: str) -> tuple:
        public_id = extract_public_id(url)
        if public_id is None:
            raise ValidationError("Invalid Cloudinary URL")
        resource_type = "raw" if "/raw/" in url else "image"
        return self.storage.delete(public_id, resource_type=resource_type), public_id

    def optimized_url(self, url: str, width: int = 800, height: int = 600, crop: str = "fill") -> str:
        public_id = extract_public_id(url)
        if public_id is None:
            return url
        return self.storage.build_url(public_id, width=width, height=height, crop=crop)
