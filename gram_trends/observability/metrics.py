"""
Prometheus 指标采集
"""

import logging

from prometheus_client import Counter, Gauge, Histogram, Info

logger = logging.getLogger(__name__)

APP_INFO = Info("gram_trends_app", "GramTrends app metadata")

HTTP_REQUESTS = Counter(
    "gram_trends_http_requests_total", "HTTP requests count",
    ["method", "path", "status"],
)
HTTP_REQUEST_LATENCY = Histogram(
    "gram_trends_http_request_duration_seconds", "HTTP request latency",
    ["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

SCRAPE_COUNT = Counter(
    "gram_trends_scrape_total", "Acquisition attempts by source and outcome",
    ["source", "status"],
)
SCRAPE_LATENCY = Histogram(
    "gram_trends_scrape_duration_seconds", "Acquisition latency per source",
    ["source"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)
SCRAPE_ITEMS = Counter(
    "gram_trends_scrape_items_total", "Acquired items count",
    ["source"],
)
CIRCUIT_OPENED = Counter(
    "gram_trends_circuit_opened_total", "Circuit breaker openings",
    ["breaker"],
)
FALLBACK_COUNT = Counter(
    "gram_trends_acquisition_fallback_total", "Degraded acquisition outcomes",
    ["path"],
)

PIPELINE_COUNT = Counter(
    "gram_trends_pipeline_total", "Pipeline runs",
    ["trigger", "status"],
)
PIPELINE_LATENCY = Histogram(
    "gram_trends_pipeline_duration_seconds", "Full pipeline latency",
    buckets=[1, 5, 10, 30, 60, 120, 300, 600],
)
PIPELINE_ITEMS = Gauge(
    "gram_trends_pipeline_last_item_count", "Items written by the last pipeline run",
)
TAGS_GENERATED = Counter(
    "gram_trends_tags_generated_total", "Audio items re-tagged",
)


def set_app_info(name: str, version: str, env: str):
    APP_INFO.info({"name": name, "version": version, "env": env})


def observe_http_request(method: str, path: str, status: int, elapsed: float):
    HTTP_REQUESTS.labels(method=method, path=path, status=str(status)).inc()
    HTTP_REQUEST_LATENCY.labels(method=method, path=path).observe(max(0.0, elapsed))


def record_scrape(source: str, status: str, latency: float = 0.0):
    SCRAPE_COUNT.labels(source=source, status=status).inc()
    if latency > 0:
        SCRAPE_LATENCY.labels(source=source).observe(latency)


def record_scrape_items(source: str, count: int):
    if count > 0:
        SCRAPE_ITEMS.labels(source=source).inc(int(count))


def record_circuit_opened(breaker: str):
    CIRCUIT_OPENED.labels(breaker=breaker).inc()


def record_fallback(path: str):
    FALLBACK_COUNT.labels(path=path).inc()


def record_pipeline(trigger: str, status: str, latency: float = 0.0, item_count: int = 0, tags: int = 0):
    PIPELINE_COUNT.labels(trigger=trigger, status=status).inc()
    if latency > 0:
        PIPELINE_LATENCY.observe(latency)
    PIPELINE_ITEMS.set(max(0, int(item_count)))
    if tags > 0:
        TAGS_GENERATED.inc(int(tags))

