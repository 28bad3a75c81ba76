from typing import Optional

from crowdfund.schemas.common import CamelModel


class UploadResponse(CamelModel):
    url: str
    public_id: Optional[str] = None
    folder: str
    filename: Optional[str] = None
    content_type: str
    size: int


class DeleteUploadResponse(CamelModel):
    deleted: bool
    public_id: str


class OptimizedUrlResponse(CamelModel):
    original_url: str
    optimized_url: str
