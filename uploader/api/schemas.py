from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class UploadConfigResponse(WireModel):
    chunk_size: int = Field(alias="chunkSize")

class ChunkInitRequest(WireModel):
    file_name: str = Field(alias="fileName")
    file_size: int = Field(alias="fileSize", ge=0)

class ChunkInitResponse(WireModel):
    upload_id: str = Field(alias="uploadId")
    file_name: Optional[str] = Field(default=None, alias="fileName")
    total_chunks: Optional[int] = Field(default=None, alias="totalChunks")
    chunk_size: Optional[int] = Field(default=None, alias="chunkSize")

class ChunkUploadRequest(WireModel):
    upload_id: str = Field(alias="uploadId")
    chunk_index: int = Field(alias="chunkIndex")
    chunk: str  # base64

class ChunkUploadResponse(WireModel):
    success: bool = True
    chunk_index: int = Field(alias="chunkIndex")
    uploaded_chunks: int = Field(alias="uploadedChunks")
    total_chunks: int = Field(alias="totalChunks")
    already_uploaded: bool = Field(default=False, alias="alreadyUploaded")

class ChunkCompleteRequest(WireModel):
    upload_id: str = Field(alias="uploadId")

class StoredFile(WireModel):
    original_name: str = Field(alias="originalName")
    saved_name: str = Field(alias="savedName")
    size: int

class ChunkCompleteResponse(WireModel):
    success: bool = True
    file: StoredFile

class ExistingFile(WireModel):
    filename: str
    size: Optional[int] = None
    reason: Optional[str] = None

class ErrorFile(WireModel):
    filename: str
    error: str
    code: Optional[str] = None

class UploadBatchResponse(WireModel):
    success: bool = False
    uploaded_files: List[StoredFile] = Field(default_factory=list, alias="uploadedFiles")
    existing_files: List[ExistingFile] = Field(default_factory=list, alias="existingFiles")
    error_files: List[ErrorFile] = Field(default_factory=list, alias="errorFiles")
    total: int = 0

class ChunkCancelRequest(WireModel):
    upload_id: str = Field(alias="uploadId")

class ChunkCancelResponse(WireModel):
    success: bool = True
    message: Optional[str] = None

class ChunkProgressResponse(WireModel):
    upload_id: str = Field(alias="uploadId")
    file_name: str = Field(alias="fileName")
    file_size: int = Field(alias="fileSize")
    status: str
    total_chunks: int = Field(alias="totalChunks")
    uploaded_chunks: int = Field(alias="uploadedChunks")
    missing_chunks: List[int] = Field(default_factory=list, alias="missingChunks")
    bytes_received: int = Field(default=0, alias="bytesReceived")
    created_at: Optional[float] = Field(default=None, alias="createdAt")

class ChunkSessionsResponse(WireModel):
    sessions: List[ChunkProgressResponse] = Field(default_factory=list)
