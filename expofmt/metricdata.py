"""Metric families, their samples, and name validation."""

from __future__ import annotations

import datetime
import enum
import re
from dataclasses import dataclass, field
from typing import Optional

METRIC_NAME_LABEL = "__name__"
QUANTILE_LABEL = "quantile"
BUCKET_LABEL = "le"


class MetricType(enum.IntEnum):
    """Type of a metric family, numbered as on the wire."""

    COUNTER = 0
    GAUGE = 1
    SUMMARY = 2
    UNTYPED = 3
    HISTOGRAM = 4


class ValidationScheme(enum.Enum):
    """Which characters metric and label names may contain."""

    LEGACY = "legacy"
    UTF8 = "utf8"


@dataclass
class LabelPair:
    name: str = ""
    value: str = ""


@dataclass
class Exemplar:
    label: list[LabelPair] = field(default_factory=list)
    value: float = 0.0
    timestamp: Optional[datetime.datetime] = None


@dataclass
class Counter:
    value: float = 0.0
    exemplar: Optional[Exemplar] = None
    created_timestamp: Optional[datetime.datetime] = None


@dataclass
class Gauge:
    value: float = 0.0


@dataclass
class Untyped:
    value: float = 0.0


@dataclass
class Quantile:
    quantile: float = 0.0
    value: float = 0.0


@dataclass
class Summary:
    sample_count: int = 0
    sample_sum: float = 0.0
    quantile: list[Quantile] = field(default_factory=list)
    created_timestamp: Optional[datetime.datetime] = None


@dataclass
class Bucket:
    upper_bound: float = 0.0
    cumulative_count: int = 0
    exemplar: Optional[Exemplar] = None


@dataclass
class Histogram:
    sample_count: int = 0
    sample_sum: float = 0.0
    bucket: list[Bucket] = field(default_factory=list)
    created_timestamp: Optional[datetime.datetime] = None


@dataclass
class Metric:
    """One series of a family: its labels and exactly one kind of value."""

    label: list[LabelPair] = field(default_factory=list)
    counter: Optional[Counter] = None
    gauge: Optional[Gauge] = None
    untyped: Optional[Untyped] = None
    summary: Optional[Summary] = None
    histogram: Optional[Histogram] = None
    timestamp_ms: Optional[int] = None


@dataclass
class MetricFamily:
    """A named group of metrics sharing a type, help text and unit."""

    name: str = ""
    help: Optional[str] = None
    type: MetricType = MetricType.COUNTER
    unit: Optional[str] = None
    metric: list[Metric] = field(default_factory=list)


@dataclass
class Sample:
    """A single value with its full label set and a timestamp in milliseconds."""

    metric: dict[str, str] = field(default_factory=dict)
    value: float = 0.0
    timestamp: int = 0


_LEGACY_METRIC_NAME = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LEGACY_LABEL_NAME = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")


def _is_valid_utf8(text: str) -> bool:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def is_valid_legacy_metric_name(name: str) -> bool:
    """Whether ``name`` matches the classic metric name pattern."""
    return _LEGACY_METRIC_NAME.fullmatch(name) is not None


def is_valid_metric_name(name: str, scheme: ValidationScheme = ValidationScheme.UTF8) -> bool:
    """Whether ``name`` is a valid metric name under ``scheme``."""
    if scheme is ValidationScheme.LEGACY:
        return is_valid_legacy_metric_name(name)
    if scheme is ValidationScheme.UTF8:
        return bool(name) and _is_valid_utf8(name)
    raise ValueError(f"invalid name validation scheme requested: {scheme!r}")


def is_valid_label_name(name: str, scheme: ValidationScheme = ValidationScheme.UTF8) -> bool:
    """Whether ``name`` is a valid label name under ``scheme``."""
    if scheme is ValidationScheme.LEGACY:
        return _LEGACY_LABEL_NAME.fullmatch(name) is not None
    if scheme is ValidationScheme.UTF8:
        return bool(name) and _is_valid_utf8(name)
    raise ValueError(f"invalid name validation scheme requested: {scheme!r}")


def is_valid_label_value(value: str) -> bool:
    """Whether ``value`` is valid UTF-8 text."""
    return _is_valid_utf8(value)