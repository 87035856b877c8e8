"""Per-tenant query client verifying the written sine wave through range queries."""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

import httpx
import numpy as np
from pydantic import BaseModel, Field, ValidationError

from loadgen.config import QueryClientConfig
from loadgen.generators import (
    WAVE_METRIC_NAMES, WaveKind, align_timestamp, now_millis, seconds_to_millis, sine_wave_value
)
from loadgen.metrics import (
    COMPARISON_FAILED, COMPARISON_SUCCESS, QUERY_FAILED, QUERY_SKIPPED, QUERY_SUCCESS,
    LoadGeneratorMetrics
)
from loadgen.series import Sample
from loadgen.tenant import new_tenant_client, read_body, validate_url
from loadgen.ticker import Ticker

logger = logging.getLogger(__name__)

MAX_COMPARISON_DELTA = 0.001
MAX_QUERY_SAMPLES = 1000

DEFAULT_QUERY = f"sum({WAVE_METRIC_NAMES[WaveKind.SINE]})"
QUERY_RANGE_PATH = "/api/v1/query_range"


class QueryError(Exception):
    """A range query failed or returned an unexpected response."""


class QueryRangeSeries(BaseModel):
    """One series of a matrix result."""
    metric: Dict[str, str] = Field(default_factory=dict)
    values: List[Tuple[float, str]] = Field(default_factory=list)

    def samples(self) -> List[Sample]:
        return [Sample(int(round(ts * 1000)), float(value)) for ts, value in self.values]


class QueryRangeData(BaseModel):
    result_type: str = Field(alias="resultType")
    result: List[QueryRangeSeries] = Field(default_factory=list)


class QueryRangeResponse(BaseModel):
    """Prometheus HTTP API envelope for ``query_range``."""
    status: str
    data: Optional[QueryRangeData] = None
    error_type: Optional[str] = Field(default=None, alias="errorType")
    error: Optional[str] = None


def format_timestamp(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).isoformat()


def get_query_step(start_ms: int, end_ms: int, write_interval_ms: int) -> int:
    """Query step keeping the number of returned samples within budget.

    Returns the write interval when it fits, otherwise ``(end - start) / 1000``
    rounded up to the next whole multiple of the write interval, i.e. the
    smallest multiple for which ``(end - start) / step <= 1000``.
    """
    range_ms = end_ms - start_ms
    if range_ms // write_interval_ms <= MAX_QUERY_SAMPLES:
        return write_interval_ms

    multiple = -(-range_ms // (MAX_QUERY_SAMPLES * write_interval_ms))
    return multiple * write_interval_ms


def compare_sample_values(actual: float, expected: float, tolerance: float = MAX_COMPARISON_DELTA) -> bool:
    """Relative comparison of an actual sample value against the expected one."""
    return bool(np.isclose(actual, expected, rtol=tolerance, atol=0.0))


def verify_sine_wave_samples(
    samples: List[Sample],
    expected_series: int,
    expected_step_ms: int,
    tolerance: float = MAX_COMPARISON_DELTA
) -> List[str]:
    """Check a ``sum`` of sine wave series sample by sample.

    Returns one failure message per offending sample; an empty list means
    the result matched.
    """
    if not samples:
        return []

    timestamps = np.array([s.timestamp for s in samples], dtype=np.int64)
    actual = np.array([s.value for s in samples], dtype=np.float64)
    expected = np.array([sine_wave_value(int(ts)) for ts in timestamps], dtype=np.float64) * expected_series
    values_ok = np.isclose(actual, expected, rtol=tolerance, atol=0.0)

    failures = []
    for idx, sample in enumerate(samples):
        problems = []

        if not values_ok[idx]:
            problems.append(
                f"sample at timestamp {sample.timestamp} ({format_timestamp(sample.timestamp)}) "
                f"has value {sample.value} while was expecting {expected[idx]}"
            )

        # Samples must be contiguous at exactly one step apart.
        if idx > 0:
            prev_ts = samples[idx - 1].timestamp
            expected_ts = prev_ts + expected_step_ms
            if sample.timestamp != expected_ts:
                problems.append(
                    f"sample at timestamp {sample.timestamp} ({format_timestamp(sample.timestamp)}) "
                    f"was expected to have timestamp {expected_ts} ({format_timestamp(expected_ts)}) "
                    f"because previous sample had timestamp {prev_ts} ({format_timestamp(prev_ts)})"
                )

        if problems:
            failures.append("; ".join(problems))

    return failures


class QueryClient:
    """Periodically queries back the tenant's data and checks it."""

    def __init__(
        self,
        config: QueryClientConfig,
        metrics: Optional[LoadGeneratorMetrics] = None,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], int] = now_millis
    ):
        self.config = config
        self.url = validate_url(config.url, "query")
        self.query_range_url = str(self.url).rstrip("/") + QUERY_RANGE_PATH
        self.metrics = metrics
        self.clock = clock

        self.write_interval_ms = seconds_to_millis(config.expected_write_interval_s)
        self.max_age_ms = seconds_to_millis(config.query_max_age_s)
        self.start_time_ms = clock()

        self.client = new_tenant_client(
            config.tenant_id,
            transport,
            timeout=httpx.Timeout(config.query_timeout_s),
        )
        self.executor = ThreadPoolExecutor(
            max_workers=1 + len(config.additional_queries),
            thread_name_prefix=f"query-{config.tenant_id}"
        )
        self.ticker = Ticker(
            config.query_interval_s,
            self.run_queries,
            name=f"query-{config.tenant_id}",
            on_skip=self._on_skip
        )

        self.last_failures: List[str] = []

        if self.metrics:
            self.metrics.init_query_series(config.tenant_id, DEFAULT_QUERY, config.additional_queries)

    def start(self):
        logger.info(
            f"Starting query client for tenant {self.config.tenant_id}: "
            f"{1 + len(self.config.additional_queries)} queries every {self.config.query_interval_s}s"
        )
        self.ticker.start()

    def stop(self):
        self.ticker.stop()
        self.executor.shutdown(wait=True)
        self.client.close()

    def _on_skip(self, count: int):
        if self.metrics:
            self.metrics.record_skipped_ticks(self.config.tenant_id, "query", count)

    def _record_query(self, query: str, result: str):
        if self.metrics:
            self.metrics.record_query(self.config.tenant_id, query, result)

    def _record_comparison(self, result: str):
        if self.metrics:
            self.metrics.record_comparison(self.config.tenant_id, DEFAULT_QUERY, result)

    def get_query_time_range(self, now_ms: int) -> Optional[Tuple[int, int]]:
        """Eligible ``(start, end)`` window, or None when there is nothing to query."""
        # Leave out the last 2 write intervals so in-flight writes can land.
        end = align_timestamp(now_ms - 2 * self.write_interval_ms, self.write_interval_ms)

        # Data older than the client start may have been written with a different
        # configuration. Also honor a grace period for the initial writes.
        start = now_ms - self.max_age_ms
        start_with_grace = self.start_time_ms + 2 * self.write_interval_ms
        if start_with_grace > start:
            start = start_with_grace
        start = align_timestamp(start, self.write_interval_ms)

        if end <= start:
            return None
        return start, end

    def run_queries(self, now_ms: Optional[int] = None):
        """Run one query tick."""
        if now_ms is None:
            now_ms = self.clock()

        window = self.get_query_time_range(now_ms)
        if window is None:
            logger.debug(
                f"Skipped querying for tenant {self.config.tenant_id} "
                "because no eligible time range to query"
            )
            self._record_query(DEFAULT_QUERY, QUERY_SKIPPED)
            return

        start, end = window
        step = get_query_step(start, end, self.write_interval_ms)

        futures = [self.executor.submit(self.run_default_query, start, end, step)]
        for query in self.config.additional_queries:
            futures.append(self.executor.submit(self.run_additional_query, start, end, step, query))
        wait(futures)

    def run_default_query(self, start_ms: int, end_ms: int, step_ms: int) -> bool:
        """Query the sine wave sum and compare it against the expected values."""
        result = self._run_query_and_collect_stats(start_ms, end_ms, step_ms, DEFAULT_QUERY)
        if result is None:
            return False

        if len(result) != 1:
            failures = [f"expected 1 series in the result but got {len(result)}"]
        else:
            failures = verify_sine_wave_samples(
                result[0].samples(), self.config.expected_series, step_ms
            )

        self.last_failures = failures
        if failures:
            for failure in failures:
                logger.warning(
                    f"Query result comparison failed for tenant {self.config.tenant_id}: "
                    f"{failure} (query: {DEFAULT_QUERY})"
                )
            self._record_comparison(COMPARISON_FAILED)
            return False

        self._record_comparison(COMPARISON_SUCCESS)
        return True

    def run_additional_query(self, start_ms: int, end_ms: int, step_ms: int, query: str) -> bool:
        return self._run_query_and_collect_stats(start_ms, end_ms, step_ms, query) is not None

    def _run_query_and_collect_stats(
        self, start_ms: int, end_ms: int, step_ms: int, query: str
    ) -> Optional[List[QueryRangeSeries]]:
        try:
            result = self.run_query(start_ms, end_ms, step_ms, query)
        except (httpx.HTTPError, QueryError) as e:
            logger.error(
                f"Failed to execute query for tenant {self.config.tenant_id}: {e} (query: {query})"
            )
            self._record_query(query, QUERY_FAILED)
            return None

        self._record_query(query, QUERY_SUCCESS)
        return result

    def run_query(self, start_ms: int, end_ms: int, step_ms: int, query: str) -> List[QueryRangeSeries]:
        """Execute a range query and return the matrix result."""
        params = {
            "query": query,
            "start": f"{start_ms / 1000:.3f}",
            "end": f"{end_ms / 1000:.3f}",
            "step": f"{step_ms / 1000:.3f}",
        }
        deadline = time.monotonic() + self.config.query_timeout_s
        with self.client.stream("GET", self.query_range_url, params=params) as response:
            raw = read_body(response, deadline)

        try:
            body = QueryRangeResponse.model_validate_json(raw)
        except (ValueError, ValidationError) as e:
            raise QueryError(
                f"unexpected response with HTTP status {response.status_code}: {e}"
            )

        if response.status_code // 100 != 2 or body.status != "success":
            raise QueryError(
                f"server returned HTTP status {response.status_code} "
                f"{response.reason_phrase}: {body.error_type}: {body.error}"
            )

        if body.data is None or body.data.result_type != "matrix":
            got = body.data.result_type if body.data else None
            raise QueryError(f"was expecting to get a matrix but got {got}")

        return body.data.result
