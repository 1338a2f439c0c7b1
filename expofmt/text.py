"""Writing metric families in the classic text exposition format."""

from __future__ import annotations

import io
import math
from decimal import Decimal
from typing import Callable, Iterator, Sequence

from .metricdata import (
    BUCKET_LABEL,
    QUANTILE_LABEL,
    LabelPair,
    Metric,
    MetricFamily,
    MetricType,
    is_valid_legacy_metric_name,
)

_ESCAPES = str.maketrans({"\\": "\\\\", "\n": "\\n"})
_QUOTED_ESCAPES = str.maketrans({"\\": "\\\\", "\n": "\\n", '"': '\\"'})

_TYPE_NAMES = {
    MetricType.COUNTER: "counter",
    MetricType.GAUGE: "gauge",
    MetricType.SUMMARY: "summary",
    MetricType.UNTYPED: "untyped",
    MetricType.HISTOGRAM: "histogram",
}


def escape_string(value: str, include_double_quote: bool) -> str:
    """Escape backslashes and newlines, and double quotes if asked to."""
    return value.translate(_QUOTED_ESCAPES if include_double_quote else _ESCAPES)


def format_name(name: str) -> str:
    """Return ``name`` as-is if legacy-valid, otherwise quoted and escaped."""
    if is_valid_legacy_metric_name(name):
        return name
    return '"' + escape_string(name, True) + '"'


def _shortest_g(value: float) -> str:
    """Shortest round-trip representation in %g style with exponent threshold 6."""
    sign, digit_tuple, exponent = Decimal(repr(value)).as_tuple()
    raw = "".join(str(d) for d in digit_tuple)
    digits = raw.rstrip("0") or "0"
    exponent += len(raw) - len(digits)
    count = len(digits)
    point = count + exponent
    exp = point - 1
    prefix = "-" if sign else ""
    if exp < -4 or exp >= 6:
        mantissa = digits[0] + ("." + digits[1:] if count > 1 else "")
        exp_sign = "-" if exp < 0 else "+"
        return f"{prefix}{mantissa}e{exp_sign}{abs(exp):02d}"
    if point <= 0:
        return f"{prefix}0.{'0' * -point}{digits}"
    if point >= count:
        return prefix + digits + "0" * (point - count)
    return f"{prefix}{digits[:point]}.{digits[point:]}"


def format_float(value: float) -> str:
    """Format a float the way the text format expects."""
    if value == 1:
        return "1"
    if value == 0:
        return "0"
    if value == -1:
        return "-1"
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return _shortest_g(float(value))


def _name_and_labels(
    name: str,
    labels: Sequence[LabelPair],
    extra_name: str,
    extra_value: float,
    float_format: Callable[[float], str],
) -> str:
    """Render the metric name and the braced label set.

    A name that is not legacy-valid goes quoted inside the braces.
    """
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
        items.append(f'{extra_name}="{float_format(extra_value)}"')
    return head + "{" + ",".join(items) + "}"


def _sample_line(
    name: str,
    suffix: str,
    metric: Metric,
    value: float,
    extra_name: str = "",
    extra_value: float = 0.0,
) -> str:
    line = _name_and_labels(name + suffix, metric.label, extra_name, extra_value, format_float)
    line += " " + format_float(value)
    if metric.timestamp_ms is not None:
        line += " " + str(int(metric.timestamp_ms))
    return line + "\n"


def _metric_lines(name: str, metric_type: MetricType, metric: Metric) -> Iterator[str]:
    if metric_type == MetricType.COUNTER:
        if metric.counter is None:
            raise ValueError(f"expected counter in metric {name} {metric}")
        yield _sample_line(name, "", metric, metric.counter.value)
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
            yield _sample_line(name, "", metric, q.value, QUANTILE_LABEL, q.quantile)
        yield _sample_line(name, "_sum", metric, summary.sample_sum)
        yield _sample_line(name, "_count", metric, float(summary.sample_count))
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
                float(bucket.cumulative_count),
                BUCKET_LABEL,
                bucket.upper_bound,
            )
            if math.isinf(bucket.upper_bound) and bucket.upper_bound > 0:
                inf_seen = True
        if not inf_seen:
            yield _sample_line(
                name,
                "_bucket",
                metric,
                float(histogram.sample_count),
                BUCKET_LABEL,
                math.inf,
            )
        yield _sample_line(name, "_sum", metric, histogram.sample_sum)
        yield _sample_line(name, "_count", metric, float(histogram.sample_count))
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


def metric_family_to_text(out, family: MetricFamily) -> int:
    """Write ``family`` in text format to ``out`` and return the bytes written.

    The input is assumed to be sanitized; order is preserved as given.
    Raises ValueError for a family without metrics or name, an unknown type,
    or a metric lacking the value its family's type calls for.
    """
    if not family.metric:
        raise ValueError(f"MetricFamily has no metrics: {family}")
    name = family.name
    if not name:
        raise ValueError(f"MetricFamily has no name: {family}")

    type_word = _TYPE_NAMES.get(family.type)
    if type_word is None:
        raise ValueError(f"unknown metric type {family.type}")

    lines: list[str] = []
    if family.help is not None:
        lines.append(f"# HELP {format_name(name)} {escape_string(family.help, False)}\n")
    lines.append(f"# TYPE {format_name(name)} {type_word}\n")
    for metric in family.metric:
        lines.extend(_metric_lines(name, family.type, metric))
    return _write(out, "".join(lines))