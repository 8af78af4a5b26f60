"""Structured logging configuration for the application."""

from datetime import UTC, datetime
import json
import logging
import sys

from mobilizer.core.config import settings


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging() -> None:
    """Configure application logging based on environment."""
    log_level = logging.INFO
    if settings.ENVIRONMENT == "development":
        log_level = logging.DEBUG
    elif settings.ENVIRONMENT == "production":
        log_level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    # Use JSON formatter in production, standard elsewhere
    if settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = StandardFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set specific log levels for noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("fastapi").setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class SecurityLogger:
    """Specialized logger for authorization events."""

    def __init__(self) -> None:
        self.logger = get_logger("security")

    def log_unauthorized_access(
        self,
        resource: str,
        user_id: str | None = None,
        ip_address: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Log unauthorized access attempt."""
        self.logger.warning(
            f"Unauthorized access attempt to: {resource}",
            extra={
                "extra_fields": {
                    "event_type": "unauthorized_access",
                    "resource": resource,
                    "user_id": user_id,
                    "ip_address": ip_address,
                    "reason": reason,
                }
            },
        )

    def log_scope_denied(
        self,
        operation: str,
        user_id: str | None,
        missing_scopes: list[str],
    ) -> None:
        """Log a request rejected by the scope guard."""
        self.logger.warning(
            f"Scope check failed for operation: {operation}",
            extra={
                "extra_fields": {
                    "event_type": "scope_denied",
                    "operation": operation,
                    "user_id": user_id,
                    "missing_scopes": missing_scopes,
                }
            },
        )

    def log_movement_forbidden(self, user_id: str, movement_id: str) -> None:
        """Log a roles lookup for a movement the caller cannot see."""
        self.logger.warning(
            f"Movement visibility denied: {movement_id}",
            extra={
                "extra_fields": {
                    "event_type": "movement_forbidden",
                    "user_id": user_id,
                    "movement_id": movement_id,
                }
            },
        )


# Global security logger instance
security_logger = SecurityLogger()
