import json
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from billpay.utils.request_ctx import request_id as rid_ctx

log = logging.getLogger("req")


class RequestLogMiddleware(BaseHTTPMiddleware):
    """One access-log line per request, tagged with its X-Request-ID."""

    async def dispatch(self, request: Request, call_next):
        t0 = time.perf_counter()
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = rid_ctx.set(rid)
        try:
            response: Response = await call_next(request)
        finally:
            rid_ctx.reset(token)
        response.headers["X-Request-ID"] = rid

        payload = {
            "rid": rid,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": int((time.perf_counter() - t0) * 1000),
            "client_ip": request.client.host if request.client else "unknown",
        }
        xff = request.headers.get("x-forwarded-for")
        if xff:
            payload["xff"] = xff
        log.info(json.dumps(payload, ensure_ascii=False))
        return response
