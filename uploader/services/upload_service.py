import base64
import binascii
import json
import logging
import re
import shutil
import time
import aiofiles
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from fastapi import status
from uploader.client.name_codec import decode_filename
from uploader.core.config import settings
from uploader.utils.file_utils import (
    calculate_storage_used,
    ensure_directory_exists,
    find_dangerous_extension,
    generate_upload_id,
    sanitize_filename,
)

logger = logging.getLogger("upload_service")

SESSION_FILE = "session.json"
_UPLOAD_ID_PATTERN = re.compile(r"^\d+_[0-9a-f]{16}$")


class UploadRejected(Exception):
    """
    Raised by the service when a request cannot be honoured.
    """

    def __init__(self, code: str, message: str, status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


def quota_exceeded(available: int, needed: int) -> UploadRejected:
    return UploadRejected(
        "STORAGE_QUOTA_EXCEEDED",
        f"Not enough storage: {max(available, 0)} bytes available, {needed} bytes needed",
        status.HTTP_507_INSUFFICIENT_STORAGE,
    )


class UploadService:
    """
    Service to receive uploads into a single folder on local disk, either as
    chunked sessions (init, chunk, complete) or as one multipart batch.
    """

    def __init__(self):
        self.upload_dir = settings.UPLOAD_DIR
        self.temp_dir = settings.TEMP_DIR
        self.chunk_size = settings.RECEIVER_CHUNK_SIZE

        # Create storage directories if they don't exist
        ensure_directory_exists(self.upload_dir)
        ensure_directory_exists(self.temp_dir)

    # Storage quota

    def get_storage_used(self) -> int:
        return calculate_storage_used(self.upload_dir)

    def check_quota(self, additional: int) -> None:
        quota = settings.STORAGE_QUOTA_BYTES
        if quota is None:
            return
        used = self.get_storage_used()
        if used + additional > quota:
            raise quota_exceeded(quota - used, additional)

    # File names

    def resolve_filename(self, raw_name: str) -> str:
        """
        Decode a transport name, sanitize it and check its type.
        """
        try:
            name = sanitize_filename(decode_filename(raw_name))
        except ValueError as e:
            raise UploadRejected("PARAM_INVALID", str(e))

        ext = find_dangerous_extension(name, settings.DANGEROUS_FILE_TYPES)
        if ext:
            raise UploadRejected(
                "FILE_TYPE_NOT_ALLOWED",
                f"Files of type {ext} are not allowed",
                status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            )
        return name

    # Chunked sessions

    async def init_session(self, file_name: str, file_size: int) -> Dict[str, Any]:
        if not file_name:
            raise UploadRejected("PARAM_MISSING", "fileName is required")

        stored_name = self.resolve_filename(file_name)
        self.check_quota(file_size)

        upload_id = generate_upload_id()
        total_chunks = -(-file_size // self.chunk_size)
        now = time.time()
        session = {
            "uploadId": upload_id,
            "fileName": stored_name,
            "originalName": decode_filename(file_name),
            "fileSize": file_size,
            "chunkSize": self.chunk_size,
            "totalChunks": total_chunks,
            "uploadedChunks": [],
            "bytesReceived": 0,
            "status": "uploading",
            "createdAt": now,
            "lastUpdate": now,
        }
        ensure_directory_exists(self.temp_dir / upload_id)
        await self._save_session(session)

        logger.info(f"Initialized chunked upload {upload_id} for {stored_name} ({total_chunks} chunks)")
        return {
            "uploadId": upload_id,
            "fileName": stored_name,
            "totalChunks": total_chunks,
            "chunkSize": self.chunk_size,
        }

    async def save_chunk(self, upload_id: str, chunk_index: int, chunk: str) -> Dict[str, Any]:
        session = await self._get_session(upload_id)
        if session["status"] != "uploading":
            raise UploadRejected(
                "UPLOAD_SESSION_INVALID",
                f"Upload session is {session['status']}",
                status.HTTP_409_CONFLICT,
            )

        total_chunks = session["totalChunks"]
        if chunk_index < 0 or chunk_index >= total_chunks:
            raise UploadRejected("PARAM_INVALID", f"Chunk index {chunk_index} is out of range")

        if chunk_index in session["uploadedChunks"]:
            logger.info(f"Chunk {chunk_index} of {upload_id} already received")
            return self._chunk_status(session, chunk_index, already_uploaded=True)

        try:
            data = base64.b64decode(chunk, validate=True)
        except binascii.Error:
            raise UploadRejected("PARAM_INVALID", "Chunk is not valid base64")

        expected = min(session["chunkSize"], session["fileSize"] - chunk_index * session["chunkSize"])
        if len(data) != expected:
            raise UploadRejected(
                "PARAM_INVALID",
                f"Chunk {chunk_index} has {len(data)} bytes, expected {expected}",
            )

        self.check_quota(session["bytesReceived"] + len(data))

        async with aiofiles.open(self._chunk_path(upload_id, chunk_index), "wb") as f:
            await f.write(data)

        session["uploadedChunks"].append(chunk_index)
        session["bytesReceived"] += len(data)
        await self._save_session(session)

        logger.debug(f"Received chunk {chunk_index + 1}/{total_chunks} of {upload_id}")
        return self._chunk_status(session, chunk_index)

    async def complete_session(self, upload_id: str) -> Dict[str, Any]:
        session = await self._get_session(upload_id)
        total_chunks = session["totalChunks"]
        missing = sorted(set(range(total_chunks)) - set(session["uploadedChunks"]))
        if missing:
            raise UploadRejected(
                "UPLOAD_INCOMPLETE",
                f"{len(missing)} chunk(s) not uploaded yet",
                status.HTTP_409_CONFLICT,
            )

        file_name = session["fileName"]
        output_path = self.upload_dir / file_name
        if output_path.exists():
            self._discard_session(upload_id)
            raise UploadRejected(
                "FILE_ALREADY_EXISTS",
                f"{file_name} already exists",
                status.HTTP_409_CONFLICT,
            )

        try:
            size = await self._assemble_file(upload_id, total_chunks, output_path)
        except UploadRejected:
            output_path.unlink(missing_ok=True)
            raise
        if size != session["fileSize"]:
            output_path.unlink()
            self._discard_session(upload_id)
            raise UploadRejected(
                "FILE_SIZE_MISMATCH",
                f"Assembled {size} bytes, expected {session['fileSize']}",
            )

        self._discard_session(upload_id)
        logger.info(f"Completed chunked upload {upload_id}: {file_name} ({size} bytes)")
        return {
            "success": True,
            "file": {
                "originalName": session.get("originalName", file_name),
                "savedName": output_path.name,
                "size": size,
            },
        }

    async def get_progress(self, upload_id: str) -> Dict[str, Any]:
        session = await self._get_session(upload_id)
        return self._progress(session)

    async def cancel_session(self, upload_id: str) -> Dict[str, Any]:
        """
        Abandon a chunked upload and remove its temporary chunks.
        """
        if not upload_id:
            raise UploadRejected("PARAM_MISSING", "uploadId is required")
        await self._get_session(upload_id)
        self._discard_session(upload_id)
        logger.info(f"Cancelled chunked upload {upload_id}")
        return {"success": True, "message": "Upload cancelled"}

    async def list_sessions(self) -> List[Dict[str, Any]]:
        """
        Progress of every chunked upload still in progress, oldest first.
        """
        sessions = []
        for session_dir in self.temp_dir.iterdir():
            meta_path = session_dir / SESSION_FILE
            if not meta_path.is_file():
                continue
            try:
                async with aiofiles.open(meta_path, "r") as f:
                    session = json.loads(await f.read())
            except (OSError, ValueError) as e:
                logger.error(f"Error reading session metadata {meta_path}: {e}")
                continue
            if session.get("status") == "uploading":
                sessions.append(session)

        sessions.sort(key=lambda session: session["createdAt"])
        return [self._progress(session) for session in sessions]

    # Multipart uploads

    async def save_files(self, files: List[Tuple[str, bytes]], force: bool = False) -> Tuple[int, Dict[str, Any]]:
        """
        Store a multipart batch. Returns the HTTP status and the response body;
        name collisions without `force` produce a 409 with the same body shape.
        """
        if not files:
            raise UploadRejected("PARAM_INVALID", "No files were uploaded")
        if len(files) > settings.MAX_FILES_PER_UPLOAD:
            raise UploadRejected(
                "PARAM_INVALID",
                f"At most {settings.MAX_FILES_PER_UPLOAD} files can be uploaded at once",
            )

        self.check_quota(sum(len(content) for _, content in files))

        uploaded_files, existing_files, error_files = [], [], []
        for raw_name, content in files:
            # Names are reported back as the client sent them, the stored name only as savedName
            sent_name = decode_filename(raw_name)
            try:
                name = self.resolve_filename(raw_name)
            except UploadRejected as e:
                error_files.append({"filename": sent_name, "error": e.message, "code": e.code})
                continue

            path = self.upload_dir / name
            if path.exists() and not force:
                existing_files.append({"filename": sent_name, "size": len(content), "reason": "name_match"})
                continue

            try:
                async with aiofiles.open(path, "wb") as f:
                    await f.write(content)
            except OSError as e:
                logger.error(f"Failed to store {name}: {e}")
                error_files.append({"filename": sent_name, "error": str(e), "code": "FILE_SYSTEM_ERROR"})
                continue

            uploaded_files.append({"originalName": sent_name, "savedName": name, "size": len(content)})
            logger.info(f"Stored {name} ({len(content)} bytes)")

        result = {
            "success": len(uploaded_files) > 0,
            "uploadedFiles": uploaded_files,
            "existingFiles": existing_files,
            "errorFiles": error_files,
            "total": len(files),
        }
        if existing_files and not force:
            return status.HTTP_409_CONFLICT, result
        return status.HTTP_200_OK, result

    # Session housekeeping

    async def cleanup_stale_sessions(self, max_age_seconds: int) -> int:
        """
        Remove chunked sessions that have not been updated for `max_age_seconds`.
        """
        threshold = time.time() - max_age_seconds
        removed = 0
        for session_dir in self.temp_dir.iterdir():
            if not session_dir.is_dir():
                continue
            meta_path = session_dir / SESSION_FILE
            try:
                if meta_path.exists():
                    async with aiofiles.open(meta_path, "r") as f:
                        last_update = json.loads(await f.read()).get("lastUpdate", 0)
                else:
                    last_update = session_dir.stat().st_mtime
            except (OSError, ValueError) as e:
                logger.error(f"Error reading session metadata {meta_path}: {e}")
                continue

            if last_update < threshold:
                logger.info(f"Removing stale upload session: {session_dir.name}")
                shutil.rmtree(session_dir, ignore_errors=True)
                removed += 1
        return removed

    def _chunk_status(self, session: Dict[str, Any], chunk_index: int, already_uploaded: bool = False) -> Dict[str, Any]:
        return {
            "success": True,
            "chunkIndex": chunk_index,
            "uploadedChunks": len(session["uploadedChunks"]),
            "totalChunks": session["totalChunks"],
            "alreadyUploaded": already_uploaded,
        }

    def _progress(self, session: Dict[str, Any]) -> Dict[str, Any]:
        received = set(session["uploadedChunks"])
        return {
            "uploadId": session["uploadId"],
            "fileName": session["fileName"],
            "fileSize": session["fileSize"],
            "status": session["status"],
            "totalChunks": session["totalChunks"],
            "uploadedChunks": len(received),
            "missingChunks": [i for i in range(session["totalChunks"]) if i not in received],
            "bytesReceived": session["bytesReceived"],
            "createdAt": session["createdAt"],
        }

    def _session_dir(self, upload_id: str) -> Path:
        if not _UPLOAD_ID_PATTERN.match(upload_id):
            raise UploadRejected("RESOURCE_NOT_FOUND", "Upload session not found", status.HTTP_404_NOT_FOUND)
        return self.temp_dir / upload_id

    def _chunk_path(self, upload_id: str, chunk_index: int) -> Path:
        return self._session_dir(upload_id) / f"chunk_{chunk_index}"

    async def _get_session(self, upload_id: str) -> Dict[str, Any]:
        meta_path = self._session_dir(upload_id) / SESSION_FILE
        if not meta_path.exists():
            raise UploadRejected(
                "RESOURCE_NOT_FOUND",
                "Upload session not found or expired",
                status.HTTP_404_NOT_FOUND,
            )
        async with aiofiles.open(meta_path, "r") as f:
            return json.loads(await f.read())

    async def _save_session(self, session: Dict[str, Any]) -> None:
        session["lastUpdate"] = time.time()
        meta_path = self._session_dir(session["uploadId"]) / SESSION_FILE
        async with aiofiles.open(meta_path, "w") as f:
            await f.write(json.dumps(session))

    async def _assemble_file(self, upload_id: str, total_chunks: int, output_path: Path) -> int:
        """
        Concatenate chunk files in index order into `output_path`.
        """
        size = 0
        async with aiofiles.open(output_path, "wb") as out_file:
            for index in range(total_chunks):
                chunk_path = self._chunk_path(upload_id, index)
                if not chunk_path.exists():
                    raise UploadRejected(
                        "UPLOAD_INCOMPLETE",
                        f"Chunk file missing during assembly: {index}",
                        status.HTTP_409_CONFLICT,
                    )
                async with aiofiles.open(chunk_path, "rb") as in_file:
                    data = await in_file.read()
                await out_file.write(data)
                size += len(data)
        return size

    def _discard_session(self, upload_id: str) -> None:
        shutil.rmtree(self._session_dir(upload_id), ignore_errors=True)
