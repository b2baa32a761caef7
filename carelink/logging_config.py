"""
CareLink - Central Logging Configuration
"""
import logging
import logging.handlers
import os
import sys
from pathlib import Path
from carelink.config import LOG_LEVEL, LOG_FILE, BASE_DIR


def configure_logging():
    """
    Console logging always; a rotating file handler (10MB x 5) when LOG_FILE is set.
    """
    level = getattr(logging, LOG_LEVEL, logging.INFO)

    detailed_formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(fmt="%(levelname)s: %(name)s: %(message)s"))
    console_handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Avoid duplicate handlers on reload
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    root_logger.addHandler(console_handler)

    if LOG_FILE:
        log_path = Path(BASE_DIR) / LOG_FILE
        os.makedirs(log_path.parent, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_path,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(detailed_formatter)
        file_handler.setLevel(level)
        root_logger.addHandler(file_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.info("Logging initialized at %s", LOG_LEVEL)
