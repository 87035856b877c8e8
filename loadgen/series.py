"""Data structures for generated time series."""
from dataclasses import dataclass, field
from typing import Dict, List


@dataclass(frozen=True, order=True)
class Label:
    """A single label name/value pair."""
    name: str
    value: str


@dataclass(frozen=True)
class Sample:
    """A single sample: timestamp in milliseconds since epoch and value."""
    timestamp: int
    value: float


@dataclass
class TimeSeries:
    """A labeled series carrying one or more samples."""
    labels: List[Label]
    samples: List[Sample] = field(default_factory=list)

    def label_dict(self) -> Dict[str, str]:
        return {label.name: label.value for label in self.labels}
