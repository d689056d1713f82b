"""
Structured logging for the gateway

Request accounting, upstream timing and security events are written as one
JSON object per line so they can be shipped and queried without parsing
free text. Everything else uses plain module loggers.

Loggers used here:
- gateway: one line per /v1 request with its accounting fields
- security: authentication failures, rate limiting, logins
- upstream / usage: timings and failures of the provider and the ledger
"""
import json
import logging
import time
from contextlib import contextmanager
from typing import Any, Optional


class StructuredLogger:
    """
    Emits `{"message": ..., "timestamp": ..., **fields}` lines on a stdlib logger.

        logger = get_logger("upstream")
        logger.warning("Upstream timeout", operation="embeddings")
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(self, log_level: int, message: str, **fields: Any):
        if not self.logger.isEnabledFor(log_level):
            return
        record = {"message": message, "timestamp": time.time(), **fields}
        self.logger.log(log_level, json.dumps(record, default=str))

    def info(self, message: str, **fields: Any):
        self._log(logging.INFO, message, level="info", **fields)

    def warning(self, message: str, **fields: Any):
        self._log(logging.WARNING, message, level="warning", **fields)

    def error(self, message: str, **fields: Any):
        self._log(logging.ERROR, message, level="error", **fields)


@contextmanager
def log_duration(operation: str, logger: Optional[StructuredLogger] = None, **extra_fields: Any):
    """
    Time a block and log how long it took, or how long it ran before failing.

        with log_duration("upstream_embeddings", logger=upstream_logger, model=model):
            response = await client.embeddings.create(...)
    """
    logger = logger or get_logger("timing")
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        logger.error(
            f"{operation} failed",
            operation=operation,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
            error=str(e),
            **extra_fields,
        )
        raise
    logger.info(
        f"{operation} completed",
        operation=operation,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
        **extra_fields,
    )


def log_api_request(
    endpoint: str,
    api_key_id: str,
    status_code: int,
    request_time_ms: int,
    model: Optional[str] = None,
    tokens_used: Optional[int] = None,
    cost: Optional[float] = None,
    error: Optional[str] = None,
    logger: Optional[StructuredLogger] = None,
):
    """
    Log one metered /v1 request.

    Args:
        endpoint: Ledger endpoint name, e.g. "chat/completions"
        api_key_id: ID of the authenticated key
        status_code: HTTP status returned to the client
        request_time_ms: Time from authentication to completion
        model: Model name the client asked for
        tokens_used: Tokens charged
        cost: USD charged
        error: Failure message; failed requests are logged at ERROR
    """
    logger = logger or get_logger("gateway")
    fields = dict(
        event="api_request",
        endpoint=endpoint,
        api_key_id=api_key_id,
        status_code=status_code,
        request_time_ms=request_time_ms,
        model=model,
        tokens_used=tokens_used,
        cost=cost,
    )

    if error:
        logger.error("API request failed", error=error, **fields)
    else:
        logger.info("API request completed", **fields)


def log_security_event(
    event_type: str,
    api_key_id: Optional[str] = None,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    success: bool = True,
    logger: Optional[StructuredLogger] = None,
    **extra_fields: Any,
):
    """Authentication and quota events. Failures are logged at WARNING."""
    logger = logger or get_logger("security")
    logger._log(
        logging.INFO if success else logging.WARNING,
        f"Security event: {event_type}",
        event="security",
        event_type=event_type,
        api_key_id=api_key_id,
        user_id=user_id,
        ip_address=ip_address,
        success=success,
        **extra_fields,
    )


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name)
