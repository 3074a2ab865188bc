"""
Logging setup for the certificate authentication service.

Every log call may carry structured context as ``extra={'extra_data': {...}}``.
Messages scoped to a client certificate carry its SHA-256 thumbprint there,
which lets the audit log collect exactly the per-certificate decisions.
"""
import json
import logging
import logging.handlers
import sys
import traceback
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


THUMBPRINT_KEY = 'thumbprint'


@dataclass
class LogEntry:
    """Structured log entry for JSON logging."""
    timestamp: str
    level: str
    logger_name: str
    message: str
    module: str
    function: str
    line_number: int
    thread_id: int
    process_id: int
    thumbprint: Optional[str] = None
    extra_data: Optional[Dict[str, Any]] = None
    exception_info: Optional[Dict[str, Any]] = None


def _extra_data(record: logging.LogRecord) -> Optional[Dict[str, Any]]:
    return getattr(record, 'extra_data', None) or None


class JSONFormatter(logging.Formatter):
    """One JSON object per line, certificate thumbprint promoted to a top-level field."""

    def format(self, record: logging.LogRecord) -> str:
        extra_data = _extra_data(record)
        log_entry = LogEntry(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname,
            logger_name=record.name,
            message=record.getMessage(),
            module=record.module,
            function=record.funcName,
            line_number=record.lineno,
            thread_id=record.thread,
            process_id=record.process,
            thumbprint=extra_data.get(THUMBPRINT_KEY) if extra_data else None,
            extra_data=extra_data
        )

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_entry.exception_info = {
                'type': exc_type.__name__ if exc_type else None,
                'message': str(exc_value) if exc_value else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        return json.dumps(asdict(log_entry), default=str)


class ContextFormatter(logging.Formatter):
    """Console formatter that appends structured context such as the certificate thumbprint."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        extra_data = _extra_data(record)
        if extra_data:
            context = " ".join(f"{key}={value}" for key, value in extra_data.items() if value is not None)
            if context:
                message = f"{message} [{context}]"
        return message


class CertificateAuditFilter(logging.Filter):
    """Passes only records scoped to a client certificate."""

    def filter(self, record: logging.LogRecord) -> bool:
        extra_data = _extra_data(record)
        return bool(extra_data and extra_data.get(THUMBPRINT_KEY))


class LoggingService:
    """Installs the application's log handlers on the root logger."""

    def __init__(self, config):
        """
        Initialize logging from the application config.

        Args:
            config: Config providing log_level, log_file_path and audit_log_enabled
        """
        self.config = config
        self.log_path = Path(config.log_file_path)
        self.error_log_path = self.log_path.with_suffix('.errors.log')
        self.audit_log_path = self.log_path.with_suffix('.audit.log')
        self._setup_logging()
        self.logger = logging.getLogger(__name__)
        self.logger.info(f"Logging to {self.log_path}")

    def _setup_logging(self):
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        log_level = self._level(self.config.log_level)
        root_logger.setLevel(log_level)

        json_formatter = JSONFormatter()

        file_handler = self._rotating_handler(self.log_path, max_mb=10, backups=5)
        file_handler.setFormatter(json_formatter)
        file_handler.setLevel(log_level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(ContextFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        console_handler.setLevel(log_level)

        error_handler = self._rotating_handler(self.error_log_path, max_mb=5, backups=3)
        error_handler.setFormatter(json_formatter)
        error_handler.setLevel(logging.ERROR)

        handlers = [file_handler, console_handler, error_handler]

        # Authentication decisions are kept regardless of the configured level
        if getattr(self.config, 'audit_log_enabled', False):
            audit_handler = self._rotating_handler(self.audit_log_path, max_mb=10, backups=10)
            audit_handler.setFormatter(json_formatter)
            audit_handler.setLevel(logging.INFO)
            audit_handler.addFilter(CertificateAuditFilter())
            handlers.append(audit_handler)
            # The root level gates every handler, so let INFO through for the audit trail
            root_logger.setLevel(min(log_level, logging.INFO))

        for handler in handlers:
            root_logger.addHandler(handler)

    @staticmethod
    def _rotating_handler(path: Path, max_mb: int, backups: int) -> logging.Handler:
        return logging.handlers.RotatingFileHandler(
            filename=str(path),
            maxBytes=max_mb * 1024 * 1024,
            backupCount=backups,
            encoding='utf-8'
        )

    @staticmethod
    def _level(level: str) -> int:
        return getattr(logging, level.upper(), logging.INFO)

    def set_level(self, level: str):
        """Change the log level of the general handlers, e.g. after a configuration reload."""
        log_level = self._level(level)
        root_logger = logging.getLogger()
        audit_enabled = False
        for handler in root_logger.handlers:
            if any(isinstance(f, CertificateAuditFilter) for f in handler.filters):
                audit_enabled = True
            elif handler.level != logging.ERROR:
                handler.setLevel(log_level)
        root_logger.setLevel(min(log_level, logging.INFO) if audit_enabled else log_level)

    def log_with_context(self, level: str, message: str, **context):
        """Log message with additional context data."""
        logger = logging.getLogger('certauth')
        log_method = getattr(logger, level.lower(), logger.info)
        log_method(message, extra={'extra_data': context})
