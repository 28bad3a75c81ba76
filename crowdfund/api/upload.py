from fastapi import APIRouter, Depends, File, Query, UploadFile
from starlette.concurrency import run_in_threadpool
import structlog

from crowdfund.api.deps import get_services
from crowdfund.factory import Services
from crowdfund.schemas.upload import DeleteUploadResponse, OptimizedUrlResponse, UploadResponse

router = APIRouter(prefix="/api/upload", tags=["upload"])
logger = structlog.get_logger(__name__)


async def _read(file: UploadFile) -> bytes:
    try:
        return await file.read()
    finally:
        await file.close()


@router.post("/campaign/image", response_model=UploadResponse, status_code=201)
async def upload_campaign_image(file: UploadFile = File(...), services: Services = Depends(get_services)):
    content = await _read(file)
    return await run_in_threadpool(services.uploads.upload_campaign_image, content, file.content_type, file.filename)


@router.post("/campaign/document", response_model=UploadResponse, status_code=201)
async def upload_campaign_document(file: UploadFile = File(...), services: Services = Depends(get_services)):
    content = await _read(file)
    return await run_in_threadpool(services.uploads.upload_campaign_document, content, file.content_type, file.filename)


@router.post("/profile/image", response_model=UploadResponse, status_code=201)
async def upload_profile_image(file: UploadFile = File(...), services: Services = Depends(get_services)):
    content = await _read(file)
    return await run_in_threadpool(services.uploads.upload_profile_image, content, file.content_type, file.filename)


@router.post("", response_model=UploadResponse, status_code=201)
async def upload_file(file: UploadFile = File(...), services: Services = Depends(get_services)):
    """Generic upload, routed to the image or document folder by content type"""
    content = await _read(file)
    return await run_in_threadpool(services.uploads.upload_file, content, file.content_type, file.filename)


@router.delete("", response_model=DeleteUploadResponse)
def delete_file(url: str = Query(..., min_length=1), services: Services = Depends(get_services)):
    deleted, public_id = services.uploads.delete_by_url(url)
    return DeleteUploadResponse(deleted=deleted, public_id=public_id)


@router.get("/optimize", response_model=OptimizedUrlResponse)
def optimize_url(
    url: str = Query(..., min_length=1),
    width: int = Query(800, ge=1, le=4000),
    height: int = Query(600, ge=1, le=4000),
    crop: str = Query("fill"),
    services: Services = Depends(get_services),
):
    return OptimizedUrlResponse(
        original_url=url,
        optimized_url=services.uploads.optimized_url(url, width=width, height=height, crop=crop),
    )
