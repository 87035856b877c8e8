"""Self-monitoring counters for the load generator using prometheus_client."""
import logging
from typing import Iterable, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server

logger = logging.getLogger(__name__)

QUERY_SUCCESS = "success"
QUERY_FAILED = "failed"
QUERY_SKIPPED = "skipped"

COMPARISON_SUCCESS = "success"
COMPARISON_FAILED = "failed"

WRITE_SUCCESS = "success"
WRITE_FAILED = "failed"


class LoadGeneratorMetrics:
    """Counters shared by all tenants.

    The registry is owned by the caller and injected here; every series is
    keyed by the tenant (``user``) so tenants never contend on a series.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None, prefix: str = ""):
        if registry is None:
            registry = CollectorRegistry()
        self.registry = registry

        self.queries_total = Counter(
            f"{prefix}load_generator_queries_total",
            "Total number of attempted queries.",
            ["user", "result", "query"],
            registry=registry
        )

        self.results_compared_total = Counter(
            f"{prefix}load_generator_query_results_compared_total",
            "Total number of query results compared.",
            ["user", "result", "query"],
            registry=registry
        )

        self.write_requests_total = Counter(
            f"{prefix}load_generator_write_requests_total",
            "Total number of remote write requests sent.",
            ["user", "result"],
            registry=registry
        )

        self.written_series_total = Counter(
            f"{prefix}load_generator_written_series_total",
            "Total number of series successfully written.",
            ["user"],
            registry=registry
        )

        self.skipped_ticks_total = Counter(
            f"{prefix}load_generator_skipped_ticks_total",
            "Total number of scheduled ticks skipped because the previous one overran.",
            ["user", "client"],
            registry=registry
        )

        self.write_inflight_requests = Gauge(
            f"{prefix}load_generator_write_inflight_requests",
            "Number of remote write requests currently in flight.",
            ["user"],
            registry=registry
        )

    def init_query_series(self, user: str, default_query: str, additional_queries: Iterable[str]):
        """Create every query counter at zero so rates are defined from the start."""
        queries = [default_query, *additional_queries]
        for result in (QUERY_SUCCESS, QUERY_FAILED, QUERY_SKIPPED):
            for query in queries:
                self.queries_total.labels(user=user, result=result, query=query)
        for result in (COMPARISON_SUCCESS, COMPARISON_FAILED):
            self.results_compared_total.labels(user=user, result=result, query=default_query)

    def init_write_series(self, user: str):
        for result in (WRITE_SUCCESS, WRITE_FAILED):
            self.write_requests_total.labels(user=user, result=result)
        self.written_series_total.labels(user=user)
        self.write_inflight_requests.labels(user=user).set(0)

    def record_query(self, user: str, query: str, result: str):
        self.queries_total.labels(user=user, result=result, query=query).inc()

    def record_comparison(self, user: str, query: str, result: str):
        self.results_compared_total.labels(user=user, result=result, query=query).inc()

    def record_write(self, user: str, result: str, series_count: int = 0):
        self.write_requests_total.labels(user=user, result=result).inc()
        if result == WRITE_SUCCESS and series_count:
            self.written_series_total.labels(user=user).inc(series_count)

    def record_skipped_ticks(self, user: str, client: str, count: int):
        self.skipped_ticks_total.labels(user=user, client=client).inc(count)

    def inflight(self, user: str) -> Gauge:
        return self.write_inflight_requests.labels(user=user)


def start_metrics_server(registry: CollectorRegistry, port: int, bind_address: str = "0.0.0.0"):
    """Expose the registry over HTTP for scraping."""
    try:
        start_http_server(port, addr=bind_address, registry=registry)
        logger.info(f"Metrics server listening on {bind_address}:{port}/metrics")
    except Exception as e:
        logger.error(f"Failed to start metrics HTTP server: {e}")
        raise
