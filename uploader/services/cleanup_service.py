import asyncio
import logging
from fastapi import FastAPI
from uploader.core.config import settings
from uploader.services.upload_service import UploadService

logger = logging.getLogger("cleanup_service")

async def cleanup_stale_uploads():
    """
    Periodically remove chunked upload sessions that were abandoned.
    A session is stale once it has not received anything for
    STALE_UPLOAD_TIMEOUT_SECONDS.
    """
    while True:
        try:
            logger.info("Running cleanup task for stale uploads")
            removed = await UploadService().cleanup_stale_sessions(settings.STALE_UPLOAD_TIMEOUT_SECONDS)
            if removed:
                logger.info(f"Removed {removed} stale upload session(s)")
        except Exception as e:
            logger.error(f"Error in cleanup task: {str(e)}")

        # Wait for next run
        await asyncio.sleep(settings.CLEANUP_INTERVAL_SECONDS)

def setup_cleanup_tasks(app: FastAPI):
    """
    Set up background tasks for the FastAPI application.
    """
    @app.on_event("startup")
    async def start_cleanup_task():
        asyncio.create_task(cleanup_stale_uploads())
