# config.py
"""Application configuration"""
from typing import List
from pydantic_settings import BaseSettings
from utils.common import get_log_file_path, get_project_root

class Settings(BaseSettings):
    """Application configuration"""

    # Logger configuration
    LOG_FILE_PATH: str = get_log_file_path()
    LOGGER_NAME: str = "docconvert"
    CONSOLE_LOG_LEVEL: str = "INFO"
    # Third-party loggers that are too chatty at DEBUG
    QUIET_LOGGERS: List[str] = ["PIL", "aiosqlite", "multipart", "python_multipart"]

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./documents.db"
    DB_POOL_RECYCLE: int = 3600  # Recycle connections after 1 hour

    # Storage
    STORAGE_DIR: str = f"{get_project_root()}/storage"
    TEMP_DIR: str = f"{get_project_root()}/storage/temp"
    REPORTS_DIR: str = f"{get_project_root()}/storage/reports"
    MAX_FILE_SIZE: int = 100 * 1024 * 1024

    # Conversion workers (engine calls run here, independent of request count)
    CONVERSION_WORKERS: int = 4
    BACKGROUND_JOB_LIMIT: int = 2

    # Progress events are only forwarded when they grow by at least this much
    PROGRESS_GRANULARITY: float = 0.01

    # Verification
    VERIFICATION_MIN_MATCH_SCORE: float = 0.9

    # OCR (image -> text / docx routes)
    OCR_LANGUAGES: List[str] = ["eng"]
    OCR_DPI: int = 300

    # Rendering
    PDF_FONT_SIZE: float = 11.0
    PDF_HEADING_FONT_SIZE: float = 16.0
    RENDER_DPI: int = 72
    THUMBNAIL_MAX_DIMENSION: int = 256

    # Listing
    RECENT_DOCUMENTS_LIMIT: int = 10

    # Job progress tracking (polling endpoint)
    MAX_PROGRESS_ENTRIES: int = 500

    # App metadata
    APP_TITLE: str = "Document Conversion Service"
    APP_VERSION: str = "1.0.0"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
