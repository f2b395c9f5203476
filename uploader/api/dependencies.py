from uploader.services.upload_service import UploadService

# Dependency to get the UploadService instance
def get_upload_service() -> UploadService:
    """
    Dependency to get an UploadService bound to the configured storage directories.
    """
    return UploadService()
