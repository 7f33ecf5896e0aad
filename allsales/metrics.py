from flask import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# Upstream Metrics
steam_requests_total = Counter(
    "allsales_steam_requests_total", "Requests sent to the Steam API", ["endpoint", "outcome"]
)

steam_rate_limited_total = Counter("allsales_steam_rate_limited_total", "HTTP 429 answers from the Steam API")

steam_request_delay_seconds = Gauge(
    "allsales_steam_request_delay_seconds", "Current spacing enforced between appdetails requests"
)

steam_cache_hits_total = Counter("allsales_steam_cache_hits_total", "Steam results served from cache", ["endpoint"])

# Reconciliation Metrics
records_added_total = Counter("allsales_records_added_total", "Catalog records created")

records_updated_total = Counter("allsales_records_updated_total", "Catalog records refreshed", ["price_changed"])

records_blacklisted_total = Counter("allsales_records_blacklisted_total", "Apps sent to the blacklist", ["phase"])

item_failures_total = Counter("allsales_item_failures_total", "Per-app failures inside a run", ["phase"])

run_duration_seconds = Histogram(
    "allsales_run_duration_seconds",
    "Reconciliation run duration",
    ["kind", "status"],
    buckets=(1, 10, 60, 300, 900, 1800, 3600, 7200, 14400),
)

ACTIVE_RUNS = Gauge("allsales_active_runs", "Reconciliation runs currently executing", ["kind"])


def metrics_response():
    """Prometheus exposition for the /metrics route"""
    return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)
