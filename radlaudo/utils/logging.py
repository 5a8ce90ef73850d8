"""
Structured logging configuration for radlaudo.
Provides request tracking, latency metrics, and compliance logging.
"""

import inspect
import logging
import sys
import time
import uuid
from typing import Optional
from contextvars import ContextVar
from datetime import datetime, timezone
import json

from radlaudo.utils.config import settings, LatencyConfig

# Request context for tracking
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

_HANDLER_NAME = "radlaudo-console"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            "timestamp": _utcnow_iso(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add request context if available
        if request_id := request_id_var.get():
            log_entry["request_id"] = request_id
        if user_id := user_id_var.get():
            log_entry["user_id"] = user_id

        # Add extra fields from record
        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        # Add exception info if present
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class LatencyLogger:
    """Specialized logger for latency tracking and performance monitoring."""

    def __init__(self, name: str = "latency"):
        self.logger = logging.getLogger(name)

    def log_latency(
        self,
        operation: str,
        duration_ms: float,
        success: bool = True,
        model: Optional[str] = None,
        **kwargs,
    ) -> None:
        """Log operation latency with context."""
        extra_fields = {
            "operation": operation,
            "duration_ms": duration_ms,
            "success": success,
            "model": model,
            **kwargs,
        }

        threshold_exceeded = kwargs.get("threshold_exceeded", False)
        if _is_llm_operation(operation):
            critical, warning = (
                LatencyConfig.CRITICAL_LLM_LATENCY,
                LatencyConfig.WARNING_LLM_LATENCY,
            )
        else:
            critical, warning = (
                LatencyConfig.CRITICAL_STORAGE_LATENCY,
                LatencyConfig.WARNING_STORAGE_LATENCY,
            )

        if duration_ms > critical:
            level = logging.ERROR
        elif threshold_exceeded or duration_ms > warning:
            level = logging.WARNING
        else:
            level = logging.INFO

        message = f"{operation} completed in {duration_ms:.2f}ms"
        if threshold_exceeded:
            message += " [THRESHOLD EXCEEDED]"
        if not success:
            message += " [FAILED]"

        self.logger.log(level, message, extra={"extra_fields": extra_fields})


class ComplianceLogger:
    """Logger for compliance and audit trail requirements."""

    def __init__(self, name: str = "compliance"):
        self.logger = logging.getLogger(name)

    def log_llm_interaction(
        self,
        request_id: str,
        model: str,
        prompt_length: int,
        response_length: int,
        user_id: str,
        **kwargs,
    ) -> None:
        """Log LLM interactions for compliance."""
        extra_fields = {
            "type": "llm_interaction",
            "request_id": request_id,
            "model": model,
            "prompt_length": prompt_length,
            "response_length": response_length,
            "user_id": user_id,
            "timestamp": _utcnow_iso(),
            **kwargs,
        }

        self.logger.info(
            f"LLM interaction: {model}", extra={"extra_fields": extra_fields}
        )

    def log_generation(
        self,
        user_id: str,
        success: bool,
        mode: str,
        **kwargs,
    ) -> None:
        """Log the outcome of a report generation attempt."""
        extra_fields = {
            "type": "report_generation",
            "user_id": user_id,
            "success": success,
            "mode": mode,
            "timestamp": _utcnow_iso(),
            **kwargs,
        }

        outcome = "succeeded" if success else "failed"
        self.logger.info(
            f"Report generation {outcome} ({mode})",
            extra={"extra_fields": extra_fields},
        )

    def log_data_access(
        self,
        resource_type: str,
        resource_id: str,
        user_id: str,
        operation: str,
        success: bool,
        **kwargs,
    ) -> None:
        """Log data access for audit trail."""
        extra_fields = {
            "type": "data_access",
            "resource_type": resource_type,
            "resource_id": resource_id,
            "user_id": user_id,
            "operation": operation,
            "success": success,
            "timestamp": _utcnow_iso(),
            **kwargs,
        }

        self.logger.info(
            f"Data access: {operation} {resource_type}",
            extra={"extra_fields": extra_fields},
        )


def setup_logging() -> None:
    """Configure application logging."""
    # Create formatters
    if settings.enable_structured_logging:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    # Console handler (installed once per process)
    if not any(h.get_name() == _HANDLER_NAME for h in root_logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.set_name(_HANDLER_NAME)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    # File handler for compliance logs
    if settings.compliance_log_file:
        compliance_logger = logging.getLogger("compliance")
        if not any(isinstance(h, logging.FileHandler) for h in compliance_logger.handlers):
            file_handler = logging.FileHandler(settings.compliance_log_file)
            file_handler.setFormatter(formatter)
            compliance_logger.addHandler(file_handler)
        compliance_logger.setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Get logger instance with proper configuration."""
    return logging.getLogger(name)


def get_latency_logger() -> LatencyLogger:
    """Get latency logger instance."""
    return LatencyLogger()


def get_compliance_logger() -> ComplianceLogger:
    """Get compliance logger instance."""
    return ComplianceLogger()


# Context managers for request tracking
class RequestContext:
    """Context manager for request tracking."""

    def __init__(
        self,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ):
        self.request_id = request_id or str(uuid.uuid4())
        self.user_id = user_id
        self._tokens = []

    def __enter__(self):
        self._tokens.append(request_id_var.set(self.request_id))
        if self.user_id:
            self._tokens.append(user_id_var.set(self.user_id))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Restore previous context variable values using the tokens
        for token in reversed(self._tokens):
            token.var.reset(token)
        self._tokens = []


def _is_llm_operation(operation: str) -> bool:
    lowered = operation.lower()
    return "llm" in lowered or "anthropic" in lowered or "claude" in lowered


def _check_threshold(operation: str, duration_ms: float) -> bool:
    """Check if operation duration exceeds configured thresholds."""
    if _is_llm_operation(operation):
        return duration_ms > settings.llm_generation_threshold
    if "storage" in operation.lower() or "supabase" in operation.lower():
        return duration_ms > settings.storage_threshold
    return False


# Performance monitoring decorator
def monitor_latency(operation: str, model: Optional[str] = None):
    """Decorator to monitor operation latency with threshold checking."""

    def decorator(func):
        async def async_wrapper(*args, **kwargs):
            start_time = time.time()
            success = True

            try:
                return await func(*args, **kwargs)
            except Exception:
                success = False
                raise
            finally:
                duration_ms = (time.time() - start_time) * 1000
                get_latency_logger().log_latency(
                    operation=operation,
                    duration_ms=duration_ms,
                    success=success,
                    model=model,
                    threshold_exceeded=_check_threshold(operation, duration_ms),
                )

        def sync_wrapper(*args, **kwargs):
            start_time = time.time()
            success = True

            try:
                return func(*args, **kwargs)
            except Exception:
                success = False
                raise
            finally:
                duration_ms = (time.time() - start_time) * 1000
                get_latency_logger().log_latency(
                    operation=operation,
                    duration_ms=duration_ms,
                    success=success,
                    model=model,
                    threshold_exceeded=_check_threshold(operation, duration_ms),
                )

        if inspect.iscoroutinefunction(func):
            async_wrapper.__name__ = func.__name__
            async_wrapper.__doc__ = func.__doc__
            return async_wrapper
        else:
            sync_wrapper.__name__ = func.__name__
            sync_wrapper.__doc__ = func.__doc__
            return sync_wrapper

    return decorator


# Initialize logging on module import
setup_logging()
