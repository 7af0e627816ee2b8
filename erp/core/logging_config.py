import logging
import logging.config
import os
from datetime import datetime
from erp.core.config import settings

LOG_STREAMS = ("app", "error", "access", "audit", "realtime")
MAX_LOG_BYTES = 10 * 1024 * 1024


def _rotating_handler(log_dir: str, stream: str, level: str, formatter: str) -> dict:
    current_date = datetime.now().strftime("%Y-%m-%d")
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": formatter,
        "filename": os.path.join(log_dir, stream, f"{stream}-{current_date}.log"),
        "maxBytes": MAX_LOG_BYTES,
        "backupCount": 10,
    }


def build_logging_config(log_dir: str, level: str) -> dict:
    """
    dictConfig for the ERP backend, one dated rotating file per stream:
    app (everything), error, access (HTTP), audit (stock movements and
    count decisions) and realtime (channel hub and websocket client).
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(module)s - %(funcName)s:%(lineno)d - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "message_only": {
                "format": "%(asctime)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
            "app_file": _rotating_handler(log_dir, "app", level, "detailed"),
            "error_file": _rotating_handler(log_dir, "error", "ERROR", "detailed"),
            "access_file": _rotating_handler(log_dir, "access", "INFO", "message_only"),
            "audit_file": _rotating_handler(log_dir, "audit", "INFO", "message_only"),
            "realtime_file": _rotating_handler(log_dir, "realtime", "INFO", "detailed"),
        },
        "loggers": {
            "": {
                "level": level,
                "handlers": ["console", "app_file", "error_file"],
                "propagate": False,
            },
            "erp.realtime": {
                "level": "INFO",
                "handlers": ["realtime_file", "console", "error_file"],
                "propagate": False,
            },
            "erp.services.notification": {
                "level": "INFO",
                "handlers": ["realtime_file", "console", "error_file"],
                "propagate": False,
            },
            "audit": {
                "level": "INFO",
                "handlers": ["audit_file", "app_file"],
                "propagate": False,
            },
            "access": {
                "level": "INFO",
                "handlers": ["access_file"],
                "propagate": False,
            },
            "uvicorn.access": {
                "level": "INFO",
                "handlers": ["access_file"],
                "propagate": False,
            },
            "sqlalchemy.engine": {
                "level": "INFO" if settings.DATABASE_ECHO else "WARNING",
                "handlers": ["app_file"],
                "propagate": False,
            },
        },
    }


def setup_logging():
    """Setup application logging configuration"""
    log_dir = settings.LOG_DIR
    for stream in LOG_STREAMS:
        os.makedirs(os.path.join(log_dir, stream), exist_ok=True)

    logging.config.dictConfig(build_logging_config(log_dir, settings.LOG_LEVEL))

    logger = logging.getLogger(__name__)
    logger.info("ERP inventory backend - logging configured")
    logger.info(f"Log level: {settings.LOG_LEVEL}, logs directory: {log_dir}")
