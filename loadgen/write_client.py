"""Per-tenant remote write client."""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import List, Optional

import httpx

from loadgen.config import WriteClientConfig
from loadgen.generators import (
    align_timestamp, generate_all_series, now_millis, partition_batches, seconds_to_millis
)
from loadgen.metrics import WRITE_FAILED, WRITE_SUCCESS, LoadGeneratorMetrics
from loadgen.remote_write import (
    CONTENT_ENCODING, CONTENT_TYPE, REMOTE_WRITE_VERSION, encode_write_request
)
from loadgen.series import TimeSeries
from loadgen.tenant import check_deadline, new_tenant_client, read_body, validate_url
from loadgen.ticker import Ticker

logger = logging.getLogger(__name__)

USER_AGENT = "tsdb-load-generator"
MAX_ERR_MSG_LEN = 256


class RemoteWriteError(Exception):
    """The remote endpoint rejected a write request."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class WriteGate:
    """Counting semaphore bounding the number of in-flight write requests."""

    def __init__(self, concurrency: int):
        if concurrency < 1:
            raise ValueError(f"Write concurrency must be at least 1, got {concurrency}")
        self.concurrency = concurrency
        self._semaphore = threading.BoundedSemaphore(concurrency)
        self._lock = threading.Lock()
        self.in_flight = 0
        self.max_in_flight = 0

    def __enter__(self):
        self._semaphore.acquire()
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        return self

    def __exit__(self, exc_type, exc, tb):
        with self._lock:
            self.in_flight -= 1
        self._semaphore.release()
        return False


class WriteClient:
    """Generates the tenant's series on every tick and pushes them in batches."""

    def __init__(
        self,
        config: WriteClientConfig,
        metrics: Optional[LoadGeneratorMetrics] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.config = config
        self.url = validate_url(config.url, "remote write")
        self.metrics = metrics
        self.interval_ms = seconds_to_millis(config.write_interval_s)

        self.client = new_tenant_client(
            config.tenant_id,
            transport,
            timeout=httpx.Timeout(config.write_timeout_s),
        )
        self.write_gate = WriteGate(config.write_concurrency)
        self.executor = ThreadPoolExecutor(
            max_workers=config.write_concurrency,
            thread_name_prefix=f"write-{config.tenant_id}"
        )
        self.ticker = Ticker(
            config.write_interval_s,
            self.write_series,
            name=f"write-{config.tenant_id}",
            on_skip=self._on_skip
        )

        self.last_tick_ms: Optional[int] = None
        self.failed_batches = 0

        if self.metrics:
            self.metrics.init_write_series(config.tenant_id)

    def start(self):
        logger.info(
            f"Starting write client for tenant {self.config.tenant_id}: "
            f"{self.config.series_count} series every {self.config.write_interval_s}s"
        )
        self.ticker.start()

    def stop(self):
        self.ticker.stop()
        self.executor.shutdown(wait=True)
        self.client.close()

    def _on_skip(self, count: int):
        if self.metrics:
            self.metrics.record_skipped_ticks(self.config.tenant_id, "write", count)

    def write_series(self, now_ms: Optional[int] = None) -> int:
        """Run one write tick. Returns the number of batches that failed."""
        if now_ms is None:
            now_ms = now_millis()

        ts = align_timestamp(now_ms, self.interval_ms)
        series = generate_all_series(
            self.config.wave_kinds,
            ts,
            self.config.series_count,
            self.config.extra_labels,
            self.config.series_churn_period_s
        )
        batches = partition_batches(series, self.config.write_batch_size)

        futures = [self.executor.submit(self._write_batch, batch) for batch in batches]
        wait(futures)

        failed = sum(1 for f in futures if not f.result())
        self.failed_batches += failed
        self.last_tick_ms = ts

        logger.debug(
            f"Tenant {self.config.tenant_id} wrote {len(series)} series at {ts} "
            f"in {len(batches)} batches ({failed} failed)"
        )
        return failed

    def _write_batch(self, batch: List[TimeSeries]) -> bool:
        with self.write_gate:
            inflight = self.metrics.inflight(self.config.tenant_id) if self.metrics else None
            if inflight is not None:
                inflight.inc()
            try:
                self.send(batch)
            except (httpx.HTTPError, RemoteWriteError) as e:
                logger.error(f"Failed to write series for tenant {self.config.tenant_id}: {e}")
                if self.metrics:
                    self.metrics.record_write(self.config.tenant_id, WRITE_FAILED)
                return False
            finally:
                if inflight is not None:
                    inflight.dec()

        if self.metrics:
            self.metrics.record_write(self.config.tenant_id, WRITE_SUCCESS, len(batch))
        return True

    def send(self, batch: List[TimeSeries]):
        """POST one batch; raises on transport errors and non-2xx responses."""
        payload = encode_write_request(batch)
        headers = {
            "Content-Encoding": CONTENT_ENCODING,
            "Content-Type": CONTENT_TYPE,
            "User-Agent": USER_AGENT,
            "X-Prometheus-Remote-Write-Version": REMOTE_WRITE_VERSION,
        }

        deadline = time.monotonic() + self.config.write_timeout_s
        with self.client.stream("POST", self.url, content=payload, headers=headers) as response:
            check_deadline(response.request, deadline)
            if response.status_code // 100 == 2:
                return

            body = read_body(response, deadline, MAX_ERR_MSG_LEN)
            lines = body.decode("utf-8", errors="replace").splitlines()
            line = lines[0] if lines else ""

            raise RemoteWriteError(
                response.status_code,
                f"server returned HTTP status {response.status_code} "
                f"{response.reason_phrase}: {line}"
            )
