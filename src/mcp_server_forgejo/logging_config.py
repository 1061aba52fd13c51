import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from .redaction import redact

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class SafeStreamHandler(logging.StreamHandler):
    """
    Stream handler that gracefully handles closed streams during shutdown.
    """

    def emit(self, record):
        try:
            super().emit(record)
        except (ValueError, OSError) as e:
            if "closed file" in str(e).lower() or "bad file descriptor" in str(e).lower():
                # stderr already gone at interpreter shutdown
                pass
            else:
                raise


class SecretRedactingFilter(logging.Filter):
    """
    Masks registered credentials in the rendered message and exception text.

    The record is rewritten in place so every handler downstream sees the
    masked form.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = redact(message)
        if masked != message:
            record.msg = masked
            record.args = None
        if record.exc_info and not record.exc_text:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = redact(record.exc_text)
            # exc_info would be re-rendered unmasked by the formatter
            record.exc_info = None
        return True


class StructuredLogFormatter(logging.Formatter):
    """
    Formats log records as structured JSON with contextual fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in ("request_id", "tool", "duration_ms", "outcome"):
            value = getattr(record, field, None)
            if value is not None:
                log_record[field] = value
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        elif record.exc_text:
            log_record["exception"] = record.exc_text
        return json.dumps(log_record, ensure_ascii=False, default=str)


def configure_logging(
    log_level: str = "INFO",
    structured: bool = False,
    log_dir: Optional[Path] = None,
) -> Optional[Path]:
    """
    Centralized logging configuration for MCP Forgejo Server.

    All output goes to stderr since stdout carries the protocol. When
    ``log_dir`` is given a debug-level file log is added and its path returned.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    redacting = SecretRedactingFilter()

    handler = SafeStreamHandler(sys.stderr)
    handler.setFormatter(StructuredLogFormatter() if structured else logging.Formatter(PLAIN_FORMAT))
    handler.addFilter(redacting)
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    log_file = None
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        session_id = os.environ.get("MCP_SESSION_ID", datetime.now().strftime("%Y%m%d_%H%M%S"))
        log_file = log_dir / f"mcp_forgejo_debug-{session_id}.log"
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
        file_handler.addFilter(redacting)
        root_logger.addHandler(file_handler)
        # the file always wants debug records
        root_logger.setLevel(logging.DEBUG)
        handler.setLevel(log_level.upper())

    logging.getLogger("asyncio").setLevel("WARNING")
    logging.getLogger("aiohttp").setLevel("WARNING")
    logging.getLogger("git").setLevel("WARNING")
    return log_file
