import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger("app.requests")

REQUEST_ID_HEADER = "x-request-id"


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id (client-supplied or generated), echoes it back in the
    x-request-id header and logs method, path, status and latency once the response is ready."""

    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = rid
        fields = {"request_id": rid, "method": request.method, "path": request.url.path}
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            fields["latency_ms"] = round((time.perf_counter() - start) * 1000.0, 2)
            logger.exception("request_failed", extra=fields)
            raise

        fields["status"] = response.status_code
        fields["latency_ms"] = round((time.perf_counter() - start) * 1000.0, 2)
        logger.info("request_completed", extra=fields)
        response.headers[REQUEST_ID_HEADER] = rid
        return response


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")
