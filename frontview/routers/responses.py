"""
Error responses shared by the analytics routers.

Every endpoint answers either {"data": ..., "meta": ...} (or a bare list for
distinct values) or {"error": message}. Status codes:

    400  configuration / validation errors, unknown column, memory limit
    404  table missing in the analytical store
    500  anything else
"""

import logging

from fastapi.responses import JSONResponse

from frontview.analytics.errors import classify_upstream_error

logger = logging.getLogger(__name__)


def error_response(exc: Exception, tag: str) -> JSONResponse:
    """Classify an exception and render it as {"error": ...}."""
    error = classify_upstream_error(exc)
    status_code = error.http_status
    if status_code >= 500:
        logger.exception(f"[{tag}] Failed: {exc}")
    else:
        logger.warning(f"[{tag}] Rejected ({status_code}): {error}")
    return JSONResponse(status_code=status_code, content={"error": error.user_message()})
