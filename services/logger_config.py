# services/logger_config.py
import logging
from logging.handlers import RotatingFileHandler
import os
from config import settings


def setup_logging():
    """
    Sets up logging for the conversion service.
    Everything goes to a rotating file; the console shows CONSOLE_LOG_LEVEL and above.
    """
    logger = logging.getLogger(settings.LOGGER_NAME)

    # Avoid adding duplicate handlers if this function is called multiple times
    if logger.hasHandlers():
        logger.handlers.clear()

    logger.setLevel(logging.DEBUG)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s %(filename)s:%(lineno)d] - %(message)s'
    )

    # File Handler: engine threads log here too, hence threadName
    try:
        log_dir = os.path.dirname(settings.LOG_FILE_PATH)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            settings.LOG_FILE_PATH,
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)
    except OSError as e:
        print(f"Error setting up file logger: {e}")

    logger.propagate = True

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.getLevelName(settings.CONSOLE_LOG_LEVEL.upper()))
    logger.addHandler(console_handler)

    for name in settings.QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("Logging configured successfully.")
