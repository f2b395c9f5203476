from typing import Optional, List
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from uploader.api.schemas import (
    ChunkCancelRequest,
    ChunkCancelResponse,
    ChunkCompleteRequest,
    ChunkCompleteResponse,
    ChunkInitRequest,
    ChunkInitResponse,
    ChunkProgressResponse,
    ChunkSessionsResponse,
    ChunkUploadRequest,
    ChunkUploadResponse,
    UploadConfigResponse,
)
from uploader.api.dependencies import get_upload_service
from uploader.core.config import settings
from uploader.services.upload_service import UploadRejected, UploadService

router = APIRouter(tags=["upload"])

def rejected(exc: UploadRejected) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code,
        detail={"code": exc.code, "error": exc.message},
    )

@router.get("/upload/config", response_model=UploadConfigResponse)
async def get_upload_config():
    """
    Chunk size clients should use for chunked uploads.
    """
    return UploadConfigResponse(chunk_size=settings.RECEIVER_CHUNK_SIZE)

@router.post("/chunk/init", response_model=ChunkInitResponse)
async def init_chunk_upload(
    request: ChunkInitRequest,
    upload_service: UploadService = Depends(get_upload_service)
):
    """
    Start a chunked upload session and return its upload id.
    The file name may be sent in the "UTF8:<base64>" transport form.
    """
    try:
        return await upload_service.init_session(request.file_name, request.file_size)
    except UploadRejected as e:
        raise rejected(e)

@router.post("/chunk", response_model=ChunkUploadResponse)
async def upload_chunk(
    request: ChunkUploadRequest,
    upload_service: UploadService = Depends(get_upload_service)
):
    """
    Receive one base64 encoded chunk of an upload session.
    """
    try:
        return await upload_service.save_chunk(request.upload_id, request.chunk_index, request.chunk)
    except UploadRejected as e:
        raise rejected(e)

@router.post("/chunk/complete", response_model=ChunkCompleteResponse)
async def complete_chunk_upload(
    request: ChunkCompleteRequest,
    upload_service: UploadService = Depends(get_upload_service)
):
    """
    Assemble all chunks of a session into the stored file.
    """
    try:
        return await upload_service.complete_session(request.upload_id)
    except UploadRejected as e:
        raise rejected(e)

@router.post("/chunk/cancel", response_model=ChunkCancelResponse)
async def cancel_chunk_upload(
    request: ChunkCancelRequest,
    upload_service: UploadService = Depends(get_upload_service)
):
    """
    Abandon an upload session and delete the chunks received so far.
    """
    try:
        return await upload_service.cancel_session(request.upload_id)
    except UploadRejected as e:
        raise rejected(e)

@router.get("/chunk/progress/{upload_id}", response_model=ChunkProgressResponse)
async def get_chunk_progress(
    upload_id: str,
    upload_service: UploadService = Depends(get_upload_service)
):
    """
    Received and missing chunks of an upload session.
    """
    try:
        return await upload_service.get_progress(upload_id)
    except UploadRejected as e:
        raise rejected(e)

@router.get("/chunk/sessions", response_model=ChunkSessionsResponse)
async def list_chunk_sessions(upload_service: UploadService = Depends(get_upload_service)):
    """
    List upload sessions that are still in progress.
    """
    return {"sessions": await upload_service.list_sessions()}

@router.post("/upload")
async def upload_files(
    files: List[UploadFile] = File(...),
    force: Optional[str] = Form(None),
    upload_service: UploadService = Depends(get_upload_service)
):
    """
    Upload several whole files in one multipart request.

    Responds 409 with the same body shape when some files already exist
    and force is not "true".
    """
    parts = [(file.filename or "", await file.read()) for file in files]
    try:
        status_code, result = await upload_service.save_files(parts, force=force == "true")
    except UploadRejected as e:
        raise rejected(e)
    return JSONResponse(status_code=status_code, content=result)
