import os
from pathlib import Path
from typing import List, Optional, Set
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "Folder Upload Service"
    API_PREFIX: str = "/api"
    HOST: str = "0.0.0.0"
    PORT: int = 8005
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Client settings
    SERVER_URL: str = os.getenv("SERVER_URL", "http://localhost:8005/api")
    API_TOKEN: Optional[str] = None
    DEFAULT_CHUNK_SIZE: int = 20 * 1024 * 1024  # used when /upload/config is unavailable
    CHUNK_CONFIRM_THRESHOLD: int = 10 * 1024 * 1024  # larger files need chunk mode
    REQUEST_TIMEOUT_SECONDS: Optional[float] = None  # None keeps the httpx default
    QUOTA_ERROR_CODES: Set[str] = {"STORAGE_QUOTA_EXCEEDED"}
    FILE_TYPE_ERROR_CODES: Set[str] = {"FILE_TYPE_NOT_ALLOWED"}

    # Storage settings
    UPLOAD_DIR: Path = Path("uploads")
    TEMP_DIR: Path = Path("uploads/temp")
    RECEIVER_CHUNK_SIZE: int = int(os.getenv("RECEIVER_CHUNK_SIZE", 5 * 1024 * 1024))
    STORAGE_QUOTA_BYTES: Optional[int] = 10 * 1024 * 1024 * 1024  # 10GB, None disables the check
    MAX_FILES_PER_UPLOAD: int = 200
    DANGEROUS_FILE_TYPES: List[str] = [
        ".exe", ".bat", ".cmd", ".sh", ".ps1", ".vbs",
        ".js", ".jar", ".app", ".dmg", ".deb", ".rpm",
    ]

    # Cleanup settings
    CLEANUP_INTERVAL_SECONDS: int = 1800  # Run cleanup every 30 minutes
    STALE_UPLOAD_TIMEOUT_SECONDS: int = 86400  # 24 hours

    # Create directories if they don't exist
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
        self.TEMP_DIR.mkdir(parents=True, exist_ok=True)

# Global settings instance
settings = Settings()
