"""Prometheus remote-write payload encoding.

The ``prometheus.WriteRequest`` message types are declared through a
protobuf descriptor at import time so no generated ``_pb2`` module is
needed.
"""
from typing import List

import snappy
from google.protobuf import descriptor_pb2, descriptor_pool
from google.protobuf.message_factory import GetMessageClass

from loadgen.series import Label, Sample, TimeSeries

CONTENT_ENCODING = "snappy"
CONTENT_TYPE = "application/x-protobuf"
REMOTE_WRITE_VERSION = "0.1.0"

_FIELD = descriptor_pb2.FieldDescriptorProto


def _add_field(message, name: str, number: int, field_type: int, repeated: bool = False, type_name: str = None):
    field = message.field.add(
        name=name,
        number=number,
        type=field_type,
        label=_FIELD.LABEL_REPEATED if repeated else _FIELD.LABEL_OPTIONAL,
    )
    if type_name:
        field.type_name = type_name
    return field


def _build_pool() -> descriptor_pool.DescriptorPool:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="loadgen/prompb/remote.proto",
        package="prometheus",
        syntax="proto3",
    )

    label = file_proto.message_type.add(name="Label")
    _add_field(label, "name", 1, _FIELD.TYPE_STRING)
    _add_field(label, "value", 2, _FIELD.TYPE_STRING)

    sample = file_proto.message_type.add(name="Sample")
    _add_field(sample, "value", 1, _FIELD.TYPE_DOUBLE)
    _add_field(sample, "timestamp", 2, _FIELD.TYPE_INT64)

    series = file_proto.message_type.add(name="TimeSeries")
    _add_field(series, "labels", 1, _FIELD.TYPE_MESSAGE, repeated=True, type_name=".prometheus.Label")
    _add_field(series, "samples", 2, _FIELD.TYPE_MESSAGE, repeated=True, type_name=".prometheus.Sample")

    request = file_proto.message_type.add(name="WriteRequest")
    _add_field(request, "timeseries", 1, _FIELD.TYPE_MESSAGE, repeated=True, type_name=".prometheus.TimeSeries")

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    return pool


_POOL = _build_pool()
WriteRequest = GetMessageClass(_POOL.FindMessageTypeByName("prometheus.WriteRequest"))


def build_write_request(series: List[TimeSeries]):
    """Build a ``prometheus.WriteRequest`` message for a batch of series."""
    request = WriteRequest()
    for s in series:
        ts = request.timeseries.add()
        for label in s.labels:
            ts.labels.add(name=label.name, value=label.value)
        for sample in s.samples:
            ts.samples.add(value=sample.value, timestamp=sample.timestamp)
    return request


def encode_write_request(series: List[TimeSeries]) -> bytes:
    """Serialize and snappy-compress a batch of series."""
    data = build_write_request(series).SerializeToString()
    return snappy.compress(data)


def decode_write_request(payload: bytes) -> List[TimeSeries]:
    """Inverse of :func:`encode_write_request`."""
    request = WriteRequest()
    request.ParseFromString(snappy.decompress(payload))
    return [
        TimeSeries(
            labels=[Label(label.name, label.value) for label in ts.labels],
            samples=[Sample(sample.timestamp, sample.value) for sample in ts.samples],
        )
        for ts in request.timeseries
    ]
