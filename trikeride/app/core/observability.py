"""
Request observability middleware.

Tags every registry request with a correlation id, times it, and logs one
line per request with the booking it touched, so a booking's claim race
or completion attempt can be followed across drivers.
"""

import re
import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("trikeride")

CORRELATION_HEADER = "X-Correlation-ID"

_BOOKING_PATH = re.compile(r"/bookings/(\d+)(?:/|$)")


def booking_id_from_path(path: str):
    """Booking id addressed by a request path, or None."""
    match = _BOOKING_PATH.search(path)
    return int(match.group(1)) if match else None


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time"] = f"{duration_ms:.2f}"

        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "booking_id": booking_id_from_path(request.url.path),
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
        }

        # 409 and 410 are routine outcomes of drivers racing for the same booking
        if response.status_code >= 500:
            logger.error("Registry request failed", extra=log_data)
        elif response.status_code in (409, 410):
            logger.info("Booking no longer available", extra=log_data)
        elif response.status_code >= 400:
            logger.warning("Registry request rejected", extra=log_data)
        else:
            logger.info("Registry request", extra=log_data)

        return response
