import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional, Union

from .error_handler import mask_credential

failure_logger = logging.getLogger("quota_rotator.failures")
failure_logger.addHandler(logging.NullHandler())


class JsonFormatter(logging.Formatter):
    """Formats each record as one JSON object per line."""

    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
        }
        if isinstance(record.msg, dict):
            log_record.update(record.msg)
        else:
            log_record["message"] = record.getMessage()
        return json.dumps(log_record)


def configure_failure_logger(log_dir: Union[str, os.PathLike]) -> logging.Logger:
    """Sets up a dedicated JSON log file for failed API calls."""
    os.makedirs(log_dir, exist_ok=True)
    failure_logger.setLevel(logging.INFO)
    # Keep failure records out of the application's own log output
    failure_logger.propagate = False

    # Use a rotating file handler to keep log files from growing too large
    handler = RotatingFileHandler(
        os.path.join(log_dir, "failures.log"),
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=2,
    )
    handler.setFormatter(JsonFormatter())

    # Add handler only if it hasn't been added before
    if not any(isinstance(h, RotatingFileHandler) for h in failure_logger.handlers):
        failure_logger.addHandler(handler)
    else:
        handler.close()

    return failure_logger


def log_failure(
    credential: str,
    attempt: int,
    error: Exception,
    request_data: dict,
    status_code: Optional[int] = None,
):
    """Logs a structured message for a failed API call."""
    # Try to get the raw response from the exception if it exists
    raw_response = getattr(error, "body", None)

    log_data = {
        "credential_ending": mask_credential(credential),
        "model": request_data.get("model"),
        "attempt_number": attempt,
        "status_code": status_code,
        "error_type": type(error).__name__,
        "error_message": str(error),
        "raw_response": raw_response,
        "message_count": len(request_data.get("messages", [])),
    }
    failure_logger.error(log_data)
