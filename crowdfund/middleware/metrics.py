"""
Prometheus metrics middleware and donation lifecycle counters
"""
import time
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

logger = structlog.get_logger(__name__)

http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

# Donation lifecycle
donation_transitions_total = Counter(
    'donation_transitions_total',
    'Donation status transitions applied',
    ['status']
)

donation_rejections_total = Counter(
    'donation_rejections_total',
    'Donation attempts rejected before reaching the processor',
    ['reason']
)

webhook_events_total = Counter(
    'webhook_events_total',
    'Processor webhook events received',
    ['event_type', 'outcome']
)

stale_donations_swept_total = Counter(
    'stale_donations_swept_total',
    'Stale donations handled by the scheduled sweep',
    ['outcome']
)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect Prometheus metrics for HTTP requests"""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Route template keeps label cardinality bounded
        endpoint = request.url.path
        route = request.scope.get('route')
        if route is not None and hasattr(route, 'path'):
            endpoint = route.path

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status=str(response.status_code)
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint
        ).observe(duration)

        return response


async def metrics_endpoint(request: Request):
    """Endpoint to expose Prometheus metrics"""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
