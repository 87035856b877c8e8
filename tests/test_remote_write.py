"""Tests for remote write payload encoding."""
import snappy

from loadgen.generators import WaveKind, generate_series
from loadgen.remote_write import WriteRequest, decode_write_request, encode_write_request


def test_encode_write_request_is_snappy_compressed_protobuf():
    series = generate_series(WaveKind.SINE, 1_687_996_800_000, 3, extra_labels=1, churn_period_s=60)
    payload = encode_write_request(series)

    request = WriteRequest()
    request.ParseFromString(snappy.decompress(payload))

    assert len(request.timeseries) == 3
    first = request.timeseries[0]
    assert [(label.name, label.value) for label in first.labels] == [
        (label.name, label.value) for label in series[0].labels
    ]
    assert first.samples[0].timestamp == 1_687_996_800_000
    assert first.samples[0].value == series[0].samples[0].value


def test_decode_write_request_restores_series():
    series = generate_series(WaveKind.SAWTOOTH, 1_687_996_810_000, 2)
    assert decode_write_request(encode_write_request(series)) == series


def test_encode_empty_batch():
    assert decode_write_request(encode_write_request([])) == []
