"""Writing metric families in the OpenMetrics text format."""

from __future__ import annotations

import datetime
import io
import math
from typing import Iterator, Optional, Sequence

from .metricdata import (
    BUCKET_LABEL,
    QUANTILE_LABEL,
    Exemplar,
    LabelPair,
    Metric,
    MetricFamily,
    MetricType,
    is_valid_legacy_metric_name,
)
from .text import escape_string, format_float, format_name

_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)

_TYPE_NAMES = {
    MetricType.GAUGE: "gauge",
    MetricType.SUMMARY: "summary",
    MetricType.UNTYPED: "unknown",
    MetricType.HISTOGRAM: "histogram",
}


def format_openmetrics_float(value: float) -> str:
    """Format a float for OpenMetrics: like the text format, but always with '.' or 'e'."""
    if value == 1:
        return "1.0"
    if value == 0:
        return "0.0"
    if value == -1:
        return "-1.0"
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    text = format_float(value)
    if "e" not in text and "." not in text:
        text += ".0"
    return text


def _seconds(moment: datetime.datetime) -> float:
    """Seconds since the epoch; a naive datetime is taken to be UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=datetime.timezone.utc)
    delta = moment - _EPOCH
    nanos = (delta.days * 86400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1000
    return nanos / 1e9


def _name_and_labels(
    name: str,
    labels: Sequence[LabelPair],
    extra_name: str = "",
    extra_value: float = 0.0,
) -> str:
    head = ""
    items: list[str] = []
    if name:
        if is_valid_legacy_metric_name(name):
            head = name
        else:
            items.append(format_name(name))
    if not labels and not extra_name:
        return head + ("{" + items[0] + "}" if items else "")
    items.extend(
        f'{format_name(pair.name)}="{escape_string(pair.value, True)}"' for pair in labels
    )
    if extra_name:
        items.append(f'{extra_name}="{format_openmetrics_float(extra_value)}"')
    return head + "{" + ",".join(items) + "}"


def _exemplar_text(exemplar: Exemplar) -> str:
    text = " # " + _name_and_labels("", exemplar.label)
    text += " " + format_openmetrics_float(exemplar.value)
    if exemplar.timestamp is not None:
        text += " " + format_openmetrics_float(_seconds(exemplar.timestamp))
    return text


def _sample_line(
    name: str,
    suffix: str,
    metric: Metric,
    value: float | int,
    *,
    extra_name: str = "",
    extra_value: float = 0.0,
    as_int: bool = False,
    exemplar: Optional[Exemplar] = None,
) -> str:
    line = _name_and_labels(name + suffix, metric.label, extra_name, extra_value)
    line += " " + (str(int(value)) if as_int else format_openmetrics_float(value))
    if metric.timestamp_ms is not None:
        line += " " + format_openmetrics_float(metric.timestamp_ms / 1000)
    if exemplar is not None and exemplar.label:
        line += _exemplar_text(exemplar)
    return line + "\n"


def _created_line(
    name: str, suffix_to_trim: str, metric: Metric, created: datetime.datetime
) -> str:
    if suffix_to_trim and name.endswith(suffix_to_trim):
        name = name[: -len(suffix_to_trim)]
    line = _name_and_labels(name + "_created", metric.label)
    return f"{line} {format_openmetrics_float(_seconds(created))}\n"


def _metric_lines(
    name: str, metric_type: MetricType, metric: Metric, with_created_lines: bool
) -> Iterator[str]:
    if metric_type == MetricType.COUNTER:
        counter = metric.counter
        if counter is None:
            raise ValueError(f"expected counter in metric {name} {metric}")
        yield _sample_line(name, "", metric, counter.value, exemplar=counter.exemplar)
        if with_created_lines and counter.created_timestamp is not None:
            yield _created_line(name, "_total", metric, counter.created_timestamp)
    elif metric_type == MetricType.GAUGE:
        if metric.gauge is None:
            raise ValueError(f"expected gauge in metric {name} {metric}")
        yield _sample_line(name, "", metric, metric.gauge.value)
    elif metric_type == MetricType.UNTYPED:
        if metric.untyped is None:
            raise ValueError(f"expected untyped in metric {name} {metric}")
        yield _sample_line(name, "", metric, metric.untyped.value)
    elif metric_type == MetricType.SUMMARY:
        summary = metric.summary
        if summary is None:
            raise ValueError(f"expected summary in metric {name} {metric}")
        for q in summary.quantile:
            yield _sample_line(
                name, "", metric, q.value, extra_name=QUANTILE_LABEL, extra_value=q.quantile
            )
        yield _sample_line(name, "_sum", metric, summary.sample_sum)
        yield _sample_line(name, "_count", metric, summary.sample_count, as_int=True)
        if with_created_lines and summary.created_timestamp is not None:
            yield _created_line(name, "", metric, summary.created_timestamp)
    elif metric_type == MetricType.HISTOGRAM:
        histogram = metric.histogram
        if histogram is None:
            raise ValueError(f"expected histogram in metric {name} {metric}")
        inf_seen = False
        for bucket in histogram.bucket:
            yield _sample_line(
                name,
                "_bucket",
                metric,
                bucket.cumulative_count,
                extra_name=BUCKET_LABEL,
                extra_value=bucket.upper_bound,
                as_int=True,
                exemplar=bucket.exemplar,
            )
            if math.isinf(bucket.upper_bound) and bucket.upper_bound > 0:
                inf_seen = True
        if not inf_seen:
            yield _sample_line(
                name,
                "_bucket",
                metric,
                histogram.sample_count,
                extra_name=BUCKET_LABEL,
                extra_value=math.inf,
                as_int=True,
            )
        yield _sample_line(name, "_sum", metric, histogram.sample_sum)
        yield _sample_line(name, "_count", metric, histogram.sample_count, as_int=True)
        if with_created_lines and histogram.created_timestamp is not None:
            yield _created_line(name, "", metric, histogram.created_timestamp)
    else:
        raise ValueError(f"unexpected type in metric {name} {metric}")


def _write(out, text: str) -> int:
    """Write ``text`` to a text or binary stream; return the UTF-8 byte count."""
    data = text.encode("utf-8")
    if isinstance(out, (io.RawIOBase, io.BufferedIOBase)):
        out.write(data)
    else:
        out.write(text)
    return len(data)


def metric_family_to_openmetrics(
    out,
    family: MetricFamily,
    *,
    with_created_lines: bool = False,
    with_unit: bool = False,
) -> int:
    """Write ``family`` in OpenMetrics format to ``out`` and return the bytes written.

    Counters named without a ``_total`` suffix are typed ``unknown``. The unit
    is written, and appended to the name, only when ``with_unit`` is set.
    The closing ``# EOF`` line is left to :func:`finalize_openmetrics`.
    """
    name = family.name
    if not name:
        raise ValueError(f"MetricFamily has no name: {family}")

    metric_type = family.type
    is_total_counter = metric_type == MetricType.COUNTER and name.endswith("_total")
    compliant_name = name[: -len("_total")] if is_total_counter else name
    if with_unit and family.unit is not None and not compliant_name.endswith("_" + family.unit):
        compliant_name = compliant_name + "_" + family.unit

    if metric_type == MetricType.COUNTER:
        type_word = "counter" if is_total_counter else "unknown"
    else:
        type_word = _TYPE_NAMES.get(metric_type)
        if type_word is None:
            raise ValueError(f"unknown metric type {metric_type}")

    lines: list[str] = []
    if family.help is not None:
        lines.append(f"# HELP {format_name(compliant_name)} {escape_string(family.help, True)}\n")
    lines.append(f"# TYPE {format_name(compliant_name)} {type_word}\n")
    if with_unit and family.unit is not None:
        lines.append(f"# UNIT {format_name(compliant_name)} {escape_string(family.unit, True)}\n")

    if is_total_counter:
        compliant_name += "_total"
    for metric in family.metric:
        lines.extend(_metric_lines(compliant_name, metric_type, metric, with_created_lines))
    return _write(out, "".join(lines))


def finalize_openmetrics(out) -> int:
    """Write the closing ``# EOF`` line and return the bytes written."""
    return _write(out, "# EOF\n")