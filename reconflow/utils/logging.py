"""
Logging with correlation IDs.

Log lines emitted inside ``with_correlation(...)`` carry the organization,
processing job and workflow execution they belong to:

    logger = logging.getLogger(__name__)

    with with_correlation(organization_id="org-1", job_id="job-42"):
        logger.info("Extracting document")
"""
import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional, Dict, Any


@dataclass
class CorrelationContext:
    """Identifiers attached to every log record."""
    organization_id: Optional[str] = None
    job_id: Optional[str] = None
    execution_id: Optional[str] = None
    step_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None values."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def merge(self, **kwargs) -> "CorrelationContext":
        data = self.to_dict()
        data.update({k: v for k, v in kwargs.items() if v is not None})
        return CorrelationContext(**data)


_correlation_context: ContextVar[CorrelationContext] = ContextVar(
    "correlation_context",
    default=CorrelationContext()
)


def get_correlation_context() -> CorrelationContext:
    """Get the current correlation context."""
    return _correlation_context.get()


@contextmanager
def with_correlation(**kwargs):
    """Set correlation IDs for log records emitted inside the block."""
    new_ctx = get_correlation_context().merge(**kwargs)
    token = _correlation_context.set(new_ctx)
    try:
        yield new_ctx
    finally:
        _correlation_context.reset(token)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, including correlation context."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(get_correlation_context().to_dict())

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Plain text formatter with a correlation prefix.

    2024-01-09 12:00:00 [INFO ] reconflow.jobs.tracker [org-1/job:3f2a]: Job completed
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_correlation_context()

        parts = []
        if ctx.organization_id:
            parts.append(ctx.organization_id)
        if ctx.job_id:
            parts.append(f"job:{ctx.job_id[:8]}")
        if ctx.execution_id:
            parts.append(f"exec:{ctx.execution_id[:8]}")
        if ctx.step_id:
            parts.append(ctx.step_id)
        correlation = "/".join(parts) if parts else "-"

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        msg = f"{timestamp} [{record.levelname:5}] {record.name} [{correlation}]: {record.getMessage()}"

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


def configure_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Install a single stdout handler on the ``reconflow`` logger."""
    logger = logging.getLogger("reconflow")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())
    logger.addHandler(handler)
    logger.propagate = False
