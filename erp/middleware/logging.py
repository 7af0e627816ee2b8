import time
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from erp.core.request_context import HDR_REQUEST_ID, get_request_context

logger = logging.getLogger("access")

SLOW_REQUEST_SECONDS = 1.0

class LoggingMiddleware(BaseHTTPMiddleware):
    """Access log line per HTTP request, tagged with a request id"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        context = get_request_context(request)
        request.state.request_id = context["request_id"]

        response = await call_next(request)

        process_time = time.time() - start_time
        message = (
            f"[{context['request_id']}] {context['endpoint']} - "
            f"Status: {response.status_code} - "
            f"Client: {context['ip_address'] or 'unknown'} - "
            f"Time: {process_time:.4f}s"
        )
        if process_time > SLOW_REQUEST_SECONDS:
            logger.warning(f"Slow request {message}")
        else:
            logger.info(message)

        response.headers["X-Process-Time"] = str(process_time)
        response.headers[HDR_REQUEST_ID] = context["request_id"]
        return response
