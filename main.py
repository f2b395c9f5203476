import logging
import uvicorn
from fastapi import FastAPI
from uploader.api.routers import upload
from uploader.core.config import settings
from uploader.services.cleanup_service import setup_cleanup_tasks

logging.basicConfig(level=settings.LOG_LEVEL)

# Create FastAPI application
app = FastAPI(title=settings.PROJECT_NAME)

# Include routers
app.include_router(upload.router, prefix=settings.API_PREFIX)

# Set up background cleanup tasks
setup_cleanup_tasks(app)

if __name__ == "__main__":
    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT, reload=True)
