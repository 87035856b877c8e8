"""Deterministic waveform generators.

Every value produced here is a pure function of absolute time, so the
query path can rebuild the exact values written by the write path without
sharing any state with it.
"""
import time
from enum import Enum
from typing import Dict, List, Sequence

import numpy as np

from loadgen.series import Label, Sample, TimeSeries

NANOS_PER_MILLI = 1_000_000
NANOS_PER_SECOND = 1_000_000_000

# With a 15-second scrape interval this gives a ten-minute period.
WAVE_PERIOD_NS = 40 * 15 * NANOS_PER_SECOND

METRIC_NAME_LABEL = "__name__"
WAVE_LABEL = "wave"
CHURN_LABEL = "churn"
EXTRA_LABEL_VALUE = "default"


class WaveKind(str, Enum):
    """Supported waveform kinds."""
    SINE = "sine"
    SAWTOOTH = "sawtooth"


WAVE_METRIC_NAMES: Dict[WaveKind, str] = {
    WaveKind.SINE: "load_generator_sine_wave",
    WaveKind.SAWTOOTH: "load_generator_sawtooth_wave",
}


def now_millis() -> int:
    return time.time_ns() // NANOS_PER_MILLI


def seconds_to_millis(seconds: float) -> int:
    return int(round(seconds * 1000))


def align_timestamp(ts_ms: int, interval_ms: int) -> int:
    """Align a millisecond timestamp down to a multiple of the interval."""
    if interval_ms <= 0:
        raise ValueError(f"interval must be positive, got {interval_ms}")
    return (ts_ms // interval_ms) * interval_ms


def sine_wave_value(ts_ms: int) -> float:
    """Sine value at the given timestamp, period of ten minutes."""
    radians = float(ts_ms * NANOS_PER_MILLI) / WAVE_PERIOD_NS * 2 * np.pi
    return float(np.sin(radians))


def sawtooth_wave_value(ts_ms: int) -> float:
    """Ramp in [0, 1) sharing the sine period."""
    return ((ts_ms * NANOS_PER_MILLI) % WAVE_PERIOD_NS) / WAVE_PERIOD_NS


_VALUE_FUNCTIONS = {
    WaveKind.SINE: sine_wave_value,
    WaveKind.SAWTOOTH: sawtooth_wave_value,
}


def wave_value(kind: WaveKind, ts_ms: int) -> float:
    return _VALUE_FUNCTIONS[WaveKind(kind)](ts_ms)


def churn_id(ts_ms: int, series_id: int, series_count: int, churn_period_s: int) -> int:
    """Bucket id for the churn label of one series.

    Series ids are phase shifted across the churn period so that they do
    not all relabel at the same time.
    """
    churn_period_ns = churn_period_s * NANOS_PER_SECOND
    shifted_ns = ts_ms * NANOS_PER_MILLI + (churn_period_ns // series_count) * series_id
    return (shifted_ns // NANOS_PER_SECOND) // churn_period_s


def generate_series(
    kind: WaveKind,
    ts_ms: int,
    series_count: int,
    extra_labels: int = 0,
    churn_period_s: int = 0
) -> List[TimeSeries]:
    """Generate one sample for each of ``series_count`` series at ``ts_ms``."""
    kind = WaveKind(kind)
    metric_name = WAVE_METRIC_NAMES[kind]
    value = wave_value(kind, ts_ms)

    extra = [Label(f"extraLabel{j}", EXTRA_LABEL_VALUE) for j in range(extra_labels)]

    out = []
    for series_id in range(1, series_count + 1):
        labels = [
            Label(METRIC_NAME_LABEL, metric_name),
            Label(WAVE_LABEL, str(series_id)),
        ]
        labels.extend(extra)

        if churn_period_s > 0:
            labels.append(
                Label(CHURN_LABEL, str(churn_id(ts_ms, series_id, series_count, churn_period_s)))
            )

        labels.sort(key=lambda label: (label.name, label.value))
        out.append(TimeSeries(labels=labels, samples=[Sample(ts_ms, value)]))

    return out


def generate_all_series(
    kinds: Sequence[WaveKind],
    ts_ms: int,
    series_count: int,
    extra_labels: int = 0,
    churn_period_s: int = 0
) -> List[TimeSeries]:
    """Generate series for every configured wave kind, in kind order."""
    out: List[TimeSeries] = []
    for kind in kinds:
        out.extend(generate_series(kind, ts_ms, series_count, extra_labels, churn_period_s))
    return out


def partition_batches(series: List[TimeSeries], batch_size: int) -> List[List[TimeSeries]]:
    """Split series into contiguous batches of at most ``batch_size``."""
    if batch_size <= 0:
        raise ValueError(f"batch size must be positive, got {batch_size}")
    return [series[o:o + batch_size] for o in range(0, len(series), batch_size)]
