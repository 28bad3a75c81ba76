"""
Request logging middleware with trace correlation
"""
import time
from fastapi import Request
from opentelemetry import trace
import structlog

from crowdfund.api.deps import client_ip

logger = structlog.get_logger(__name__)

# payment and upload routes are the ones support needs to trace back to a caller
AUDITED_PREFIXES = ("/api/donations", "/api/payment", "/api/upload")


def _trace_id() -> str:
    span = trace.get_current_span()
    if span and span.get_span_context().is_valid:
        return format(span.get_span_context().trace_id, '032x')
    return ""


async def logging_middleware(request: Request, call_next):
    """Log every HTTP request once it completes, with trace id, caller IP and latency"""
    start_time = time.time()
    trace_id = _trace_id()

    response = await call_next(request)

    fields = dict(
        trace_id=trace_id,
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        client_ip=client_ip(request),
        latency_seconds=round(time.time() - start_time, 3),
    )
    if request.url.path.startswith(AUDITED_PREFIXES):
        fields["user_agent"] = request.headers.get("user-agent", "")
        fields["authenticated"] = "authorization" in request.headers

    if response.status_code >= 500:
        logger.error("Request failed", **fields)
    else:
        logger.info("Request completed", **fields)

    return response
