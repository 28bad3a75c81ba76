"""
Media storage client backed by Cloudinary
"""
from typing import Any, Dict, List, Optional, Protocol

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
import cloudinary.utils
import structlog

from crowdfund.core.errors import UpstreamError

logger = structlog.get_logger(__name__)


class MediaStorage(Protocol):
    """Protocol for the media hosting provider"""

    def upload(
        self,
        content: bytes,
        content_type: str,
        folder: str,
        resource_type: str = "image",
        tags: Optional[List[str]] = None,
        public_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Store the bytes and return at least ``url`` and ``public_id``"""
        ...

    def delete(self, public_id: str, resource_type: str = "image") -> bool:
        ...

    def build_url(self, public_id: str, width: int, height: int, crop: str = "fill") -> str:
        ...


class CloudinaryStorage:
    """Cloudinary implementation of MediaStorage"""

    def __init__(self, cloud_name: str, api_key: str, api_secret: str):
        self.credentials = {
            "cloud_name": cloud_name,
            "api_key": api_key,
            "api_secret": api_secret,
        }
        if not cloud_name:
            logger.warning("Cloudinary cloud name not configured, uploads will fail")

    def upload(
        self,
        content: bytes,
        content_type: str,
        folder: str,
        resource_type: str = "image",
        tags: Optional[List[str]] = None,
        public_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        options = {
            "folder": folder,
            "resource_type": resource_type,
            "tags": tags or [],
            "overwrite": False,
        }
        if public_id:
            options["public_id"] = public_id

        try:
            result = cloudinary.uploader.upload(content, **options, **self.credentials)
        except cloudinary.exceptions.Error as e:
            logger.error("Media upload failed", folder=folder, content_type=content_type, error=str(e))
            raise UpstreamError(f"Failed to upload file: {e}")

        logger.info("Media uploaded", folder=folder, public_id=result.get("public_id"), bytes=result.get("bytes"))
        return {
            "url": result.get("secure_url") or result.get("url"),
            "public_id": result.get("public_id"),
        }

    def delete(self, public_id: str, resource_type: str = "image") -> bool:
        try:
            result = cloudinary.uploader.destroy(public_id, resource_type=resource_type, **self.credentials)
        except cloudinary.exceptions.Error as e:
            logger.error("Media delete failed", public_id=public_id, error=str(e))
            raise UpstreamError(f"Failed to delete file: {e}")

        deleted = result.get("result") == "ok"
        if not deleted:
            logger.warning("Media delete returned non-ok status", public_id=public_id, status=result.get("result"))
        return deleted

    def build_url(self, public_id: str, width: int, height: int, crop: str = "fill") -> str:
        url, _ = cloudinary.utils.cloudinary_url(
            public_id,
            width=width,
            height=height,
            crop=crop or "fill",
            quality="auto:good",
            fetch_format="auto",
            secure=True,
            **self.credentials,
        )
        return url
