from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "Total HTTP 5xx responses",
    ["method", "path", "status"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)

NETWORK_SYNC_ATTEMPTS = Counter(
    "network_sync_attempts_total",
    "Provider sync attempts by outcome",
    ["provider", "action", "status"],
)
NETWORK_SYNC_DURATION = Histogram(
    "network_sync_duration_seconds",
    "Provider call latency",
    ["provider", "action"],
)
API_GATEWAY_REQUESTS = Counter(
    "api_gateway_requests_total",
    "Tenant API gateway responses",
    ["resource", "status"],
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)


def observe_sync(provider: str, action: str, status: str, duration: float) -> None:
    NETWORK_SYNC_ATTEMPTS.labels(provider=provider, action=action, status=status).inc()
    NETWORK_SYNC_DURATION.labels(provider=provider, action=action).observe(duration)
