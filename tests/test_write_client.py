"""Tests for the remote write client."""
import threading
import time

import httpx
import pytest
from prometheus_client import CollectorRegistry

from loadgen.config import WriteClientConfig
from loadgen.generators import WaveKind, sine_wave_value
from loadgen.metrics import LoadGeneratorMetrics
from loadgen.remote_write import decode_write_request
from loadgen.tenant import TENANT_HEADER
from loadgen.write_client import RemoteWriteError, WriteClient, WriteGate

NOW_MS = 1_687_996_807_345
ALIGNED_MS = 1_687_996_800_000


class StubEndpoint:
    """Records every remote write request it receives."""

    def __init__(self, status_code=200, body=b"", delay_s=0.0):
        self.status_code = status_code
        self.body = body
        self.delay_s = delay_s
        self.requests = []
        self._lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.delay_s:
            time.sleep(self.delay_s)
        with self._lock:
            self.requests.append(request)
        return httpx.Response(self.status_code, content=self.body)

    def batches(self):
        return [decode_write_request(r.content) for r in self.requests]


class SlowBody(httpx.SyncByteStream):
    """Response body that trickles out one byte at a time."""

    def __init__(self, content: bytes, delay_s: float):
        self.content = content
        self.delay_s = delay_s

    def __iter__(self):
        for i in range(len(self.content)):
            time.sleep(self.delay_s)
            yield self.content[i:i + 1]


def make_config(**overrides):
    values = dict(
        url="http://cortex/api/v1/push",
        tenant_id="load-generator-1",
        series_count=5,
        write_interval_s=10,
        write_batch_size=2,
        write_concurrency=2,
    )
    values.update(overrides)
    return WriteClientConfig(**values)


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return LoadGeneratorMetrics(registry=registry)


def make_client(endpoint, metrics, **overrides):
    return WriteClient(make_config(**overrides), metrics, transport=httpx.MockTransport(endpoint))


def test_write_tick_sends_batches_with_tenant_header(metrics, registry):
    endpoint = StubEndpoint()
    client = make_client(endpoint, metrics)
    try:
        failed = client.write_series(NOW_MS)
    finally:
        client.stop()

    assert failed == 0
    assert len(endpoint.requests) == 3
    assert sorted(len(b) for b in endpoint.batches()) == [1, 2, 2]

    for request in endpoint.requests:
        assert request.method == "POST"
        assert str(request.url) == "http://cortex/api/v1/push"
        assert request.headers[TENANT_HEADER] == "load-generator-1"
        assert request.headers["Content-Encoding"] == "snappy"
        assert request.headers["Content-Type"] == "application/x-protobuf"
        assert request.headers["User-Agent"] == "tsdb-load-generator"
        assert request.headers["X-Prometheus-Remote-Write-Version"] == "0.1.0"

    waves = sorted(
        int(s.label_dict()["wave"]) for batch in endpoint.batches() for s in batch
    )
    assert waves == [1, 2, 3, 4, 5]

    for batch in endpoint.batches():
        for s in batch:
            assert s.samples[0].timestamp == ALIGNED_MS
            assert s.samples[0].value == sine_wave_value(ALIGNED_MS)

    assert client.last_tick_ms == ALIGNED_MS
    assert registry.get_sample_value(
        "load_generator_write_requests_total", {"user": "load-generator-1", "result": "success"}
    ) == 3
    assert registry.get_sample_value(
        "load_generator_written_series_total", {"user": "load-generator-1"}
    ) == 5


def test_write_tick_generates_every_wave_kind(metrics):
    endpoint = StubEndpoint()
    client = make_client(
        endpoint, metrics, series_count=2, write_batch_size=10,
        wave_kinds=(WaveKind.SINE, WaveKind.SAWTOOTH)
    )
    try:
        client.write_series(NOW_MS)
    finally:
        client.stop()

    (batch,) = endpoint.batches()
    names = [s.label_dict()["__name__"] for s in batch]
    assert names == [
        "load_generator_sine_wave", "load_generator_sine_wave",
        "load_generator_sawtooth_wave", "load_generator_sawtooth_wave",
    ]


def test_failed_writes_are_counted_and_not_retried(metrics, registry):
    endpoint = StubEndpoint(status_code=500, body=b"ingester unavailable\nstack trace follows")
    client = make_client(endpoint, metrics)
    try:
        failed = client.write_series(NOW_MS)
    finally:
        client.stop()

    assert failed == 3
    assert len(endpoint.requests) == 3
    assert client.failed_batches == 3
    assert registry.get_sample_value(
        "load_generator_write_requests_total", {"user": "load-generator-1", "result": "failed"}
    ) == 3
    assert registry.get_sample_value(
        "load_generator_written_series_total", {"user": "load-generator-1"}
    ) == 0


def test_network_errors_are_counted(metrics, registry):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = WriteClient(make_config(), metrics, transport=httpx.MockTransport(handler))
    try:
        assert client.write_series(NOW_MS) == 3
    finally:
        client.stop()

    assert registry.get_sample_value(
        "load_generator_write_requests_total", {"user": "load-generator-1", "result": "failed"}
    ) == 3


def test_send_error_message_is_bounded_to_first_line(metrics):
    endpoint = StubEndpoint(status_code=400, body=b"out of order sample\n" + b"x" * 1000)
    client = make_client(endpoint, metrics)
    try:
        with pytest.raises(RemoteWriteError) as excinfo:
            client.send([])
    finally:
        client.stop()

    assert excinfo.value.status_code == 400
    assert str(excinfo.value) == "server returned HTTP status 400 Bad Request: out of order sample"


def test_send_error_message_truncates_long_line(metrics):
    endpoint = StubEndpoint(status_code=429, body=b"y" * 1000)
    client = make_client(endpoint, metrics)
    try:
        with pytest.raises(RemoteWriteError) as excinfo:
            client.send([])
    finally:
        client.stop()

    assert str(excinfo.value).endswith(": " + "y" * 256)


def test_slow_error_body_is_bounded_by_write_timeout(metrics, registry):
    def handler(request):
        return httpx.Response(500, stream=SlowBody(b"e" * 1000, 0.05))

    client = WriteClient(
        make_config(write_timeout_s=0.2), metrics, transport=httpx.MockTransport(handler)
    )
    try:
        started = time.monotonic()
        with pytest.raises(httpx.TimeoutException):
            client.send([])
        assert time.monotonic() - started < 2

        assert client.write_series(NOW_MS) == 3
    finally:
        client.stop()

    assert registry.get_sample_value(
        "load_generator_write_requests_total", {"user": "load-generator-1", "result": "failed"}
    ) == 3


def test_concurrency_is_bounded_by_write_gate(metrics):
    endpoint = StubEndpoint(delay_s=0.05)
    client = make_client(endpoint, metrics, series_count=20, write_batch_size=1, write_concurrency=3)
    try:
        client.write_series(NOW_MS)
    finally:
        client.stop()

    assert len(endpoint.requests) == 20
    assert 1 <= client.write_gate.max_in_flight <= 3
    assert client.write_gate.in_flight == 0


def test_write_gate_releases_on_error():
    gate = WriteGate(1)
    with pytest.raises(RuntimeError):
        with gate:
            raise RuntimeError("boom")

    with gate:
        assert gate.in_flight == 1
    assert gate.in_flight == 0


def test_malformed_url_fails_at_construction(metrics):
    with pytest.raises(ValueError):
        WriteClient(make_config(url="localhost:9009"), metrics)
