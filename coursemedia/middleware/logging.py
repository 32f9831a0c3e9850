# coursemedia/middleware/logging.py
"""
Logging middleware for request/response tracking.
"""

import time

from fastapi import Request

from coursemedia.core.logging import get_logger

logger = get_logger(__name__)

# status polling is frequent enough to drown everything else at info level
_QUIET_PREFIXES = ("/health", "/db/health")


async def logging_middleware(request: Request, call_next):
    """
    Log all incoming requests and their response times.
    """
    start_time = time.time()
    path = request.url.path
    log = logger.debug if path.startswith(_QUIET_PREFIXES) or "/status/" in path else logger.info

    log(
        "request started",
        method=request.method,
        path=path,
        client=request.client.host if request.client else None,
    )

    response = await call_next(request)

    duration = time.time() - start_time
    log(
        "request completed",
        method=request.method,
        path=path,
        status_code=response.status_code,
        duration_ms=round(duration * 1000, 2),
    )

    return response
