"""Reading metric families from a stream and turning them into samples."""

from __future__ import annotations

import io
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import BinaryIO, Iterator, Mapping, Optional, Union

from .formats import (
    FMT_PROTO_DELIM,
    FMT_TEXT,
    FMT_UNKNOWN,
    HDR_CONTENT_TYPE,
    PROTO_PROTOCOL,
    PROTO_TYPE,
    TEXT_VERSION,
    Format,
    FormatType,
)
from .metricdata import (
    BUCKET_LABEL,
    METRIC_NAME_LABEL,
    QUANTILE_LABEL,
    Metric,
    MetricFamily,
    MetricType,
    Sample,
    ValidationScheme,
    is_valid_label_name,
    is_valid_label_value,
    is_valid_metric_name,
)
from .protodelim import read_delimited


@dataclass
class DecodeOptions:
    """Options for sample extraction.

    ``timestamp`` (milliseconds) is given to every sample without its own.
    """

    timestamp: int = 0


class SampleExtractionError(ValueError):
    """Raised when some families could not be turned into samples.

    ``samples`` holds what was extracted from the other families.
    """

    def __init__(self, message: str, samples: list[Sample]):
        super().__init__(message)
        self.samples = samples


def _parse_media_type(value: str) -> Optional[tuple[str, dict[str, str]]]:
    media_type, *rest = value.split(";")
    media_type = media_type.strip().lower()
    if not media_type or "/" not in media_type:
        return None
    params: dict[str, str] = {}
    for part in rest:
        if not part.strip():
            continue
        key, sep, val = part.partition("=")
        if not sep or not key.strip():
            return None
        val = val.strip()
        if len(val) >= 2 and val[0] == '"' and val[-1] == '"':
            val = val[1:-1]
        params[key.strip().lower()] = val
    return media_type, params


def _header(headers: Optional[Mapping[str, str]], name: str) -> str:
    for key, value in (headers or {}).items():
        if key.lower() == name.lower():
            return value
    return ""


def response_format(headers: Optional[Mapping[str, str]]) -> Format:
    """Return the format named by the Content-Type header, or FMT_UNKNOWN."""
    parsed = _parse_media_type(_header(headers, HDR_CONTENT_TYPE))
    if parsed is None:
        return FMT_UNKNOWN
    media_type, params = parsed
    if media_type == PROTO_TYPE:
        if params.get("proto", PROTO_PROTOCOL) != PROTO_PROTOCOL:
            return FMT_UNKNOWN
        if params.get("encoding", "delimited") != "delimited":
            return FMT_UNKNOWN
        return FMT_PROTO_DELIM
    if media_type == "text/plain":
        if params.get("version", TEXT_VERSION) != TEXT_VERSION:
            return FMT_UNKNOWN
        return FMT_TEXT
    return FMT_UNKNOWN


class ProtoDecoder:
    """Reads length-delimited metric families and validates their names."""

    def __init__(
        self,
        stream: Union[BinaryIO, bytes],
        validation_scheme: ValidationScheme = ValidationScheme.UTF8,
    ):
        self._stream = io.BytesIO(stream) if isinstance(stream, (bytes, bytearray)) else stream
        self._scheme = validation_scheme

    def decode(self) -> MetricFamily:
        """Return the next family; raise EOFError at the end, ValueError if invalid."""
        family = read_delimited(self._stream)
        if family is None:
            raise EOFError("no more metric families")
        if not is_valid_metric_name(family.name, self._scheme):
            raise ValueError(f"invalid metric name {family.name!r}")
        for metric in family.metric:
            for pair in metric.label:
                if not is_valid_label_value(pair.value):
                    raise ValueError(f"invalid label value {pair.value!r}")
                if not is_valid_label_name(pair.name, self._scheme):
                    raise ValueError(f"invalid label name {pair.name!r}")
        return family

    def __iter__(self) -> Iterator[MetricFamily]:
        while True:
            try:
                yield self.decode()
            except EOFError:
                return


def new_decoder(stream: BinaryIO, format: Format) -> ProtoDecoder:
    """Return a decoder for ``format``; only the delimited protobuf format is readable."""
    if Format(format).format_type() == FormatType.PROTO_DELIM:
        return ProtoDecoder(stream)
    raise ValueError(f"no decoder available for format {format!r}")


class SampleDecoder:
    """Wraps a family decoder and yields the samples of each family."""

    def __init__(self, decoder, options: Optional[DecodeOptions] = None):
        self.decoder = decoder
        self.options = options or DecodeOptions()

    def decode(self) -> list[Sample]:
        """Return the samples of the next family; raise EOFError at the end."""
        return _extract(self.decoder.decode(), self.options)

    def __iter__(self) -> Iterator[list[Sample]]:
        while True:
            try:
                yield self.decode()
            except EOFError:
                return


def extract_samples(options: Optional[DecodeOptions], *args: MetricFamily) -> list[Sample]:
    """Extract samples from all families.

    Families that fail are skipped; if any did, SampleExtractionError is raised
    with the last failure's message and the samples of the rest.
    """
    options = options or DecodeOptions()
    samples: list[Sample] = []
    last_error: Optional[Exception] = None
    for family in args:
        try:
            samples.extend(_extract(family, options))
        except ValueError as err:
            last_error = err
    if last_error is not None:
        raise SampleExtractionError(str(last_error), samples)
    return samples


def _go_float(value: float) -> str:
    """Shortest float text with exponents only below 1e-4 or from 1e21."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"
    sign, digit_tuple, exponent = Decimal(repr(float(value))).as_tuple()
    raw = "".join(str(d) for d in digit_tuple)
    digits = raw.rstrip("0") or "0"
    exponent += len(raw) - len(digits)
    count = len(digits)
    point = count + exponent
    exp = point - 1
    prefix = "-" if sign else ""
    if exp < -4 or exp >= 21:
        mantissa = digits[0] + ("." + digits[1:] if count > 1 else "")
        return f"{prefix}{mantissa}e{'-' if exp < 0 else '+'}{abs(exp):02d}"
    if point <= 0:
        return f"{prefix}0.{'0' * -point}{digits}"
    if point >= count:
        return prefix + digits + "0" * (point - count)
    return f"{prefix}{digits[:point]}.{digits[point:]}"


def _labels(metric: Metric, name: str, **extra: str) -> dict[str, str]:
    labels = {pair.name: pair.value for pair in metric.label}
    labels.update(extra)
    labels[METRIC_NAME_LABEL] = name
    return labels


def _timestamp(metric: Metric, options: DecodeOptions) -> int:
    return metric.timestamp_ms if metric.timestamp_ms is not None else options.timestamp


def _extract(family: MetricFamily, options: DecodeOptions) -> list[Sample]:
    kind = family.type
    name = family.name
    samples: list[Sample] = []
    if kind in (MetricType.COUNTER, MetricType.GAUGE, MetricType.UNTYPED):
        attr = {
            MetricType.COUNTER: "counter",
            MetricType.GAUGE: "gauge",
            MetricType.UNTYPED: "untyped",
        }[MetricType(kind)]
        for metric in family.metric:
            holder = getattr(metric, attr)
            if holder is None:
                continue
            samples.append(
                Sample(_labels(metric, name), float(holder.value), _timestamp(metric, options))
            )
        return samples
    if kind == MetricType.SUMMARY:
        for metric in family.metric:
            summary = metric.summary
            if summary is None:
                continue
            ts = _timestamp(metric, options)
            for q in summary.quantile:
                labels = _labels(metric, name, **{QUANTILE_LABEL: _go_float(q.quantile)})
                samples.append(Sample(labels, float(q.value), ts))
            samples.append(Sample(_labels(metric, name + "_sum"), float(summary.sample_sum), ts))
            samples.append(
                Sample(_labels(metric, name + "_count"), float(summary.sample_count), ts)
            )
        return samples
    if kind == MetricType.HISTOGRAM:
        for metric in family.metric:
            histogram = metric.histogram
            if histogram is None:
                continue
            ts = _timestamp(metric, options)
            inf_seen = False
            for bucket in histogram.bucket:
                labels = _labels(
                    metric, name + "_bucket", **{BUCKET_LABEL: _go_float(bucket.upper_bound)}
                )
                if math.isinf(bucket.upper_bound) and bucket.upper_bound > 0:
                    inf_seen = True
                samples.append(Sample(labels, float(bucket.cumulative_count), ts))
            samples.append(
                Sample(_labels(metric, name + "_sum"), float(histogram.sample_sum), ts)
            )
            count = float(histogram.sample_count)
            samples.append(Sample(_labels(metric, name + "_count"), count, ts))
            if not inf_seen:
                labels = _labels(metric, name + "_bucket", **{BUCKET_LABEL: "+Inf"})
                samples.append(Sample(labels, count, ts))
        return samples
    raise ValueError(f"unknown metric family type {kind}")