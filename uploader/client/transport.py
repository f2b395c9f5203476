"""
HTTP access to the receiving folder store.

The receiver reports failures either with a non-2xx status and a
{"detail": {"code", "error"}} body, or with a 2xx status and a
{"success": false, "code", "error"} envelope. Both are turned into
UploadError here so callers only ever see one error type.
"""
import base64
import logging
import httpx
from typing import Any, List, Optional, Tuple, Type, TypeVar
from pydantic import BaseModel, ValidationError
from uploader.api.schemas import (
    ChunkCancelResponse,
    ChunkCompleteResponse,
    ChunkInitResponse,
    ChunkProgressResponse,
    ChunkUploadResponse,
    UploadConfigResponse,
)
from uploader.client.errors import INVALID_RESPONSE, NETWORK_ERROR, UploadError
from uploader.core.config import settings

logger = logging.getLogger("receiver_client")

ModelT = TypeVar("ModelT", bound=BaseModel)


def response_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def is_error_envelope(payload: Any) -> bool:
    return isinstance(payload, dict) and payload.get("success") is False and "code" in payload


def error_from_response(response: httpx.Response, payload: Any = None) -> UploadError:
    """
    Build an UploadError from a failed receiver response.
    """
    if payload is None:
        payload = response_payload(response)

    code = None
    message = None
    if isinstance(payload, dict):
        detail = payload.get("detail")
        if isinstance(detail, dict):
            code = detail.get("code")
            message = detail.get("error") or detail.get("message")
        elif isinstance(detail, str):
            message = detail
        else:
            code = payload.get("code")
            message = payload.get("error") or payload.get("message")

    return UploadError(
        code or f"HTTP_{response.status_code}",
        message or response.reason_phrase or "Request failed",
        status_code=response.status_code,
    )


def parse_model(model: Type[ModelT], payload: Any) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise UploadError(INVALID_RESPONSE, f"Unexpected response from receiver: {e}") from e


class ReceiverClient:
    """
    Thin async wrapper around the receiver's upload endpoints.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {}
        token = token or settings.API_TOKEN
        if token:
            headers["Authorization"] = f"Bearer {token}"

        options = {}
        timeout = settings.REQUEST_TIMEOUT_SECONDS if timeout is None else timeout
        if timeout is not None:
            options["timeout"] = timeout

        self._client = httpx.AsyncClient(
            base_url=base_url or settings.SERVER_URL,
            headers=headers,
            transport=transport,
            **options,
        )

    async def __aenter__(self) -> "ReceiverClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e!r}")
            raise UploadError(NETWORK_ERROR, str(e) or e.__class__.__name__) from e

    async def _call(self, method: str, path: str, **kwargs) -> Any:
        response = await self._send(method, path, **kwargs)
        payload = response_payload(response)
        if not response.is_success or is_error_envelope(payload):
            raise error_from_response(response, payload)
        return payload

    async def fetch_upload_config(self) -> UploadConfigResponse:
        payload = await self._call("GET", "/upload/config")
        return parse_model(UploadConfigResponse, payload)

    async def init_chunk_upload(self, file_name: str, file_size: int) -> ChunkInitResponse:
        payload = await self._call(
            "POST", "/chunk/init", json={"fileName": file_name, "fileSize": file_size}
        )
        return parse_model(ChunkInitResponse, payload)

    async def upload_chunk(self, upload_id: str, chunk_index: int, chunk: bytes) -> ChunkUploadResponse:
        payload = await self._call(
            "POST",
            "/chunk",
            json={
                "uploadId": upload_id,
                "chunkIndex": chunk_index,
                "chunk": base64.b64encode(chunk).decode("ascii"),
            },
        )
        return parse_model(ChunkUploadResponse, payload)

    async def complete_chunk_upload(self, upload_id: str) -> ChunkCompleteResponse:
        payload = await self._call("POST", "/chunk/complete", json={"uploadId": upload_id})
        return parse_model(ChunkCompleteResponse, payload)

    async def cancel_chunk_upload(self, upload_id: str) -> ChunkCancelResponse:
        payload = await self._call("POST", "/chunk/cancel", json={"uploadId": upload_id})
        return parse_model(ChunkCancelResponse, payload)

    async def fetch_chunk_progress(self, upload_id: str) -> ChunkProgressResponse:
        payload = await self._call("GET", f"/chunk/progress/{upload_id}")
        return parse_model(ChunkProgressResponse, payload)

    async def upload_files(self, parts: List[Tuple[str, bytes]], force: bool = False) -> httpx.Response:
        """
        Send one multipart request with a "files" part per (name, content).

        The raw response is returned; a 409 carries a valid partial result.
        """
        files = [
            ("files", (name, content, "application/octet-stream"))
            for name, content in parts
        ]
        data = {"force": "true"} if force else None
        return await self._send("POST", "/upload", files=files, data=data)
