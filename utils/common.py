# utils/common.py
"""Common utilities: file validation, naming and path management"""
import logging
import os
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

# ⚠️ DO NOT import settings here - causes circular import with config.py
# Settings is imported lazily inside functions that need it

def _get_logger():
    """Lazy logger initialization to avoid circular import"""
    from config import settings
    return logging.getLogger(settings.LOGGER_NAME)


# ============= Path Management =============

def get_project_root() -> str:
    """Returns the absolute path to the project's root directory."""
    return os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))


def get_log_file_path() -> str:
    """Creates the log directory if it doesn't exist and returns the full log file path."""
    project_root = get_project_root()
    log_dir = os.path.join(project_root, 'log')

    if not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)

    return os.path.join(log_dir, 'docconvert.log')


def clean_directory(path: Union[str, Path]) -> int:
    """
    Remove everything inside a working directory, keeping the directory itself.
    Returns the number of removed entries.
    """
    logger = _get_logger()
    directory = Path(path)
    if not directory.exists():
        directory.mkdir(parents=True, exist_ok=True)
        return 0

    removed = 0
    for entry in directory.iterdir():
        try:
            if entry.is_dir():
                shutil.rmtree(entry)
            else:
                entry.unlink()
            removed += 1
        except OSError as e:
            logger.warning(f"Could not remove {entry}: {e}")
    if removed:
        logger.info(f"Cleaned {removed} stale entries from {directory}")
    return removed


# ============= File Validation =============

# Formats stored as zip containers share the same local file header
_ZIP_BASED = {"docx", "xlsx", "pptx", "odt", "ods", "odp", "epub", "zip", "pages", "key"}


def validate_file_content(file_path: Union[str, Path], format_id: str) -> bool:
    """Checks that file content matches its declared format using magic numbers.

    Formats without a well-known signature are accepted as-is.
    """
    logger = _get_logger()  # Lazy logger

    with open(file_path, 'rb') as f:
        header = f.read(16)

    if format_id == 'pdf':
        valid = header.startswith(b'%PDF')
    elif format_id == 'jpg':
        valid = header.startswith(b'\xff\xd8')
    elif format_id == 'png':
        valid = header.startswith(b'\x89PNG')
    elif format_id == 'gif':
        valid = header.startswith(b'GIF8')
    elif format_id in _ZIP_BASED:
        valid = header.startswith(b'PK')
    else:
        valid = True

    if not valid:
        logger.warning(f"File content does not match declared format '{format_id}': {file_path}")
    return valid


# ============= File Utilities =============

def validate_document_id(doc_id: str) -> bool:
    """Validate document ID format."""
    uuid_pattern = r'^[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}$'
    return bool(re.match(uuid_pattern, doc_id, re.IGNORECASE))


def sanitize_filename(filename: str) -> str:
    """Remove dangerous characters from filename."""
    safe_name = re.sub(r'[^\w\-_\.]', '_', filename)
    safe_name = os.path.basename(safe_name)
    return safe_name[:100]


def get_file_extension(filename: str) -> str:
    """Extracts and normalizes the file extension from a filename."""
    return Path(filename).suffix[1:].lower()


def replace_extension(filename: str, extension: str) -> str:
    """'report.final.docx' + 'pdf' -> 'report.final.pdf'"""
    stem = Path(filename).stem if Path(filename).suffix else filename
    return f"{stem}.{extension.lstrip('.')}"


def timestamped_filename(filename: str, extension: str, now: Optional[datetime] = None) -> str:
    """Output file name with a timestamp suffix: name_YYYYMMDD_HHMMSS.ext"""
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    stem = Path(filename).stem if Path(filename).suffix else filename
    return f"{stem}_{stamp}.{extension.lstrip('.')}"
