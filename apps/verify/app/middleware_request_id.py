import json
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .otp_runtime import client_ip


logger = logging.getLogger("verify.request")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and writes one JSON access-log line.

    Rejections carry the ``error`` code the handler rendered, so refused
    verify and submit calls can be told apart from the log alone.
    """

    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = req_id
        start = time.perf_counter()
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = req_id
        entry = {
            "request_id": req_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "ip": client_ip(request),
            "duration_ms": int((time.perf_counter() - start) * 1000),
        }
        error_code = getattr(request.state, "error_code", None)
        if error_code:
            entry["error"] = error_code
        logger.info(json.dumps(entry))
        return response
