"""Protocol buffer wire encoding of metric families, delimited and as text."""

from __future__ import annotations

import datetime
import math
import struct
from typing import BinaryIO, Iterator, Optional, Union

from .metricdata import (
    Bucket,
    Counter,
    Exemplar,
    Gauge,
    Histogram,
    LabelPair,
    Metric,
    MetricFamily,
    MetricType,
    Quantile,
    Summary,
    Untyped,
)
from .text import format_float

_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)

_VARINT = 0
_FIXED64 = 1
_LENGTH = 2
_FIXED32 = 5


# ---------------------------------------------------------------- encoding


def _varint(value: int) -> bytes:
    if value < 0:
        value += 1 << 64
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _key(number: int, wire_type: int) -> bytes:
    return _varint((number << 3) | wire_type)


def _bytes_field(number: int, data: bytes) -> bytes:
    return _key(number, _LENGTH) + _varint(len(data)) + data


def _string_field(number: int, text: str) -> bytes:
    return _bytes_field(number, text.encode("utf-8", "surrogateescape"))


def _double_field(number: int, value: float) -> bytes:
    return _key(number, _FIXED64) + struct.pack("<d", value)


def _int_field(number: int, value: int) -> bytes:
    return _key(number, _VARINT) + _varint(int(value))


def _split_time(moment: datetime.datetime) -> tuple[int, int]:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=datetime.timezone.utc)
    delta = moment - _EPOCH
    return delta.days * 86400 + delta.seconds, delta.microseconds * 1000


def _encode_timestamp(moment: datetime.datetime) -> bytes:
    seconds, nanos = _split_time(moment)
    data = b""
    if seconds:
        data += _int_field(1, seconds)
    if nanos:
        data += _int_field(2, nanos)
    return data


def _encode_label(pair: LabelPair) -> bytes:
    return _string_field(1, pair.name) + _string_field(2, pair.value)


def _encode_exemplar(exemplar: Exemplar) -> bytes:
    data = b"".join(_bytes_field(1, _encode_label(p)) for p in exemplar.label)
    data += _double_field(2, exemplar.value)
    if exemplar.timestamp is not None:
        data += _bytes_field(3, _encode_timestamp(exemplar.timestamp))
    return data


def _encode_counter(counter: Counter) -> bytes:
    data = _double_field(1, counter.value)
    if counter.exemplar is not None:
        data += _bytes_field(2, _encode_exemplar(counter.exemplar))
    if counter.created_timestamp is not None:
        data += _bytes_field(3, _encode_timestamp(counter.created_timestamp))
    return data


def _encode_summary(summary: Summary) -> bytes:
    data = _int_field(1, summary.sample_count) + _double_field(2, summary.sample_sum)
    for q in summary.quantile:
        data += _bytes_field(3, _double_field(1, q.quantile) + _double_field(2, q.value))
    if summary.created_timestamp is not None:
        data += _bytes_field(4, _encode_timestamp(summary.created_timestamp))
    return data


def _encode_bucket(bucket: Bucket) -> bytes:
    data = _int_field(1, bucket.cumulative_count) + _double_field(2, bucket.upper_bound)
    if bucket.exemplar is not None:
        data += _bytes_field(3, _encode_exemplar(bucket.exemplar))
    return data


def _encode_histogram(histogram: Histogram) -> bytes:
    data = _int_field(1, histogram.sample_count) + _double_field(2, histogram.sample_sum)
    data += b"".join(_bytes_field(3, _encode_bucket(b)) for b in histogram.bucket)
    if histogram.created_timestamp is not None:
        data += _bytes_field(15, _encode_timestamp(histogram.created_timestamp))
    return data


def _encode_metric(metric: Metric) -> bytes:
    data = b"".join(_bytes_field(1, _encode_label(p)) for p in metric.label)
    if metric.gauge is not None:
        data += _bytes_field(2, _double_field(1, metric.gauge.value))
    if metric.counter is not None:
        data += _bytes_field(3, _encode_counter(metric.counter))
    if metric.summary is not None:
        data += _bytes_field(4, _encode_summary(metric.summary))
    if metric.untyped is not None:
        data += _bytes_field(5, _double_field(1, metric.untyped.value))
    if metric.timestamp_ms is not None:
        data += _int_field(6, metric.timestamp_ms)
    if metric.histogram is not None:
        data += _bytes_field(7, _encode_histogram(metric.histogram))
    return data


def encode_metric_family(family: MetricFamily) -> bytes:
    """Serialize ``family`` as a protocol buffer message (without length prefix)."""
    data = b""
    if family.name:
        data += _string_field(1, family.name)
    if family.help is not None:
        data += _string_field(2, family.help)
    data += _int_field(3, int(family.type))
    data += b"".join(_bytes_field(4, _encode_metric(m)) for m in family.metric)
    if family.unit is not None:
        data += _string_field(5, family.unit)
    return data


def write_delimited(out: BinaryIO, family: MetricFamily) -> int:
    """Write ``family`` with a varint length prefix; return the bytes written."""
    body = encode_metric_family(family)
    data = _varint(len(body)) + body
    out.write(data)
    return len(data)


# ---------------------------------------------------------------- decoding


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise ValueError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & ((1 << 64) - 1), pos
        shift += 7
        if shift >= 70:
            raise ValueError("varint too long")


def _fields(data: bytes) -> Iterator[tuple[int, int, Union[int, bytes]]]:
    pos = 0
    while pos < len(data):
        key, pos = _read_varint(data, pos)
        number, wire_type = key >> 3, key & 7
        if number == 0:
            raise ValueError("invalid field number 0")
        if wire_type == _VARINT:
            value, pos = _read_varint(data, pos)
            yield number, wire_type, value
            continue
        if wire_type == _FIXED64:
            size = 8
        elif wire_type == _FIXED32:
            size = 4
        elif wire_type == _LENGTH:
            size, pos = _read_varint(data, pos)
        else:
            raise ValueError(f"unsupported wire type {wire_type}")
        if pos + size > len(data):
            raise ValueError("truncated field")
        yield number, wire_type, data[pos : pos + size]
        pos += size


def _signed64(value: int) -> int:
    return value - (1 << 64) if value >= 1 << 63 else value


def _double(raw) -> float:
    if not isinstance(raw, bytes) or len(raw) != 8:
        raise ValueError("expected a double")
    return struct.unpack("<d", raw)[0]


def _text(raw) -> str:
    if not isinstance(raw, bytes):
        raise ValueError("expected a string")
    return raw.decode("utf-8", "surrogateescape")


def _msg(raw) -> bytes:
    if not isinstance(raw, bytes):
        raise ValueError("expected an embedded message")
    return raw


def _int(raw) -> int:
    if not isinstance(raw, int):
        raise ValueError("expected a varint")
    return raw


def _decode_timestamp(data: bytes) -> datetime.datetime:
    seconds = nanos = 0
    for number, _, raw in _fields(data):
        if number == 1:
            seconds = _signed64(_int(raw))
        elif number == 2:
            nanos = _signed64(_int(raw))
    return _EPOCH + datetime.timedelta(seconds=seconds, microseconds=nanos // 1000)


def _decode_label(data: bytes) -> LabelPair:
    pair = LabelPair()
    for number, _, raw in _fields(data):
        if number == 1:
            pair.name = _text(raw)
        elif number == 2:
            pair.value = _text(raw)
    return pair


def _decode_exemplar(data: bytes) -> Exemplar:
    exemplar = Exemplar()
    for number, _, raw in _fields(data):
        if number == 1:
            exemplar.label.append(_decode_label(_msg(raw)))
        elif number == 2:
            exemplar.value = _double(raw)
        elif number == 3:
            exemplar.timestamp = _decode_timestamp(_msg(raw))
    return exemplar


def _decode_single_value(data: bytes) -> float:
    value = 0.0
    for number, _, raw in _fields(data):
        if number == 1:
            value = _double(raw)
    return value


def _decode_counter(data: bytes) -> Counter:
    counter = Counter()
    for number, _, raw in _fields(data):
        if number == 1:
            counter.value = _double(raw)
        elif number == 2:
            counter.exemplar = _decode_exemplar(_msg(raw))
        elif number == 3:
            counter.created_timestamp = _decode_timestamp(_msg(raw))
    return counter


def _decode_quantile(data: bytes) -> Quantile:
    q = Quantile()
    for number, _, raw in _fields(data):
        if number == 1:
            q.quantile = _double(raw)
        elif number == 2:
            q.value = _double(raw)
    return q


def _decode_summary(data: bytes) -> Summary:
    summary = Summary()
    for number, _, raw in _fields(data):
        if number == 1:
            summary.sample_count = _int(raw)
        elif number == 2:
            summary.sample_sum = _double(raw)
        elif number == 3:
            summary.quantile.append(_decode_quantile(_msg(raw)))
        elif number == 4:
            summary.created_timestamp = _decode_timestamp(_msg(raw))
    return summary


def _decode_bucket(data: bytes) -> Bucket:
    bucket = Bucket()
    for number, _, raw in _fields(data):
        if number == 1:
            bucket.cumulative_count = _int(raw)
        elif number == 2:
            bucket.upper_bound = _double(raw)
        elif number == 3:
            bucket.exemplar = _decode_exemplar(_msg(raw))
    return bucket


def _decode_histogram(data: bytes) -> Histogram:
    histogram = Histogram()
    for number, _, raw in _fields(data):
        if number == 1:
            histogram.sample_count = _int(raw)
        elif number == 2:
            histogram.sample_sum = _double(raw)
        elif number == 3:
            histogram.bucket.append(_decode_bucket(_msg(raw)))
        elif number == 15:
            histogram.created_timestamp = _decode_timestamp(_msg(raw))
    return histogram


def _decode_metric(data: bytes) -> Metric:
    metric = Metric()
    for number, _, raw in _fields(data):
        if number == 1:
            metric.label.append(_decode_label(_msg(raw)))
        elif number == 2:
            metric.gauge = Gauge(_decode_single_value(_msg(raw)))
        elif number == 3:
            metric.counter = _decode_counter(_msg(raw))
        elif number == 4:
            metric.summary = _decode_summary(_msg(raw))
        elif number == 5:
            metric.untyped = Untyped(_decode_single_value(_msg(raw)))
        elif number == 6:
            metric.timestamp_ms = _signed64(_int(raw))
        elif number == 7:
            metric.histogram = _decode_histogram(_msg(raw))
    return metric


def decode_metric_family(data: bytes) -> MetricFamily:
    """Parse a protocol buffer message into a MetricFamily; raise ValueError if malformed."""
    family = MetricFamily()
    for number, _, raw in _fields(data):
        if number == 1:
            family.name = _text(raw)
        elif number == 2:
            family.help = _text(raw)
        elif number == 3:
            value = _signed64(_int(raw))
            try:
                family.type = MetricType(value)
            except ValueError:
                family.type = value  # unknown types are kept for the caller to reject
        elif number == 4:
            family.metric.append(_decode_metric(_msg(raw)))
        elif number == 5:
            family.unit = _text(raw)
    return family


def read_delimited(stream: BinaryIO) -> Optional[MetricFamily]:
    """Read one length-prefixed family; return None at a clean end of stream."""
    length = 0
    shift = 0
    first = True
    while True:
        byte = stream.read(1)
        if not byte:
            if first:
                return None
            raise ValueError("unexpected end of stream in length prefix")
        first = False
        length |= (byte[0] & 0x7F) << shift
        if not byte[0] & 0x80:
            break
        shift += 7
        if shift >= 70:
            raise ValueError("length prefix too long")
    data = stream.read(length)
    if len(data) != length:
        raise ValueError("unexpected end of stream in message")
    return decode_metric_family(data)


# ---------------------------------------------------------------- text form


def _quote(text: str) -> str:
    escaped = (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return '"' + escaped + '"'


def _num(value: float) -> str:
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value == 0:
        return "0"
    return format_float(value)


_Fields = list[tuple[str, object]]


def _timestamp_fields(moment: datetime.datetime) -> _Fields:
    seconds, nanos = _split_time(moment)
    fields: _Fields = []
    if seconds:
        fields.append(("seconds", str(seconds)))
    if nanos:
        fields.append(("nanos", str(nanos)))
    return fields


def _label_fields(pair: LabelPair) -> _Fields:
    return [("name", _quote(pair.name)), ("value", _quote(pair.value))]


def _exemplar_fields(exemplar: Exemplar) -> _Fields:
    fields: _Fields = [("label", _label_fields(p)) for p in exemplar.label]
    fields.append(("value", _num(exemplar.value)))
    if exemplar.timestamp is not None:
        fields.append(("timestamp", _timestamp_fields(exemplar.timestamp)))
    return fields


def _metric_fields(metric: Metric) -> _Fields:
    fields: _Fields = [("label", _label_fields(p)) for p in metric.label]
    if metric.gauge is not None:
        fields.append(("gauge", [("value", _num(metric.gauge.value))]))
    if metric.counter is not None:
        c = metric.counter
        sub: _Fields = [("value", _num(c.value))]
        if c.exemplar is not None:
            sub.append(("exemplar", _exemplar_fields(c.exemplar)))
        if c.created_timestamp is not None:
            sub.append(("created_timestamp", _timestamp_fields(c.created_timestamp)))
        fields.append(("counter", sub))
    if metric.summary is not None:
        s = metric.summary
        sub = [("sample_count", str(s.sample_count)), ("sample_sum", _num(s.sample_sum))]
        sub += [
            ("quantile", [("quantile", _num(q.quantile)), ("value", _num(q.value))])
            for q in s.quantile
        ]
        if s.created_timestamp is not None:
            sub.append(("created_timestamp", _timestamp_fields(s.created_timestamp)))
        fields.append(("summary", sub))
    if metric.untyped is not None:
        fields.append(("untyped", [("value", _num(metric.untyped.value))]))
    if metric.timestamp_ms is not None:
        fields.append(("timestamp_ms", str(metric.timestamp_ms)))
    if metric.histogram is not None:
        h = metric.histogram
        sub = [("sample_count", str(h.sample_count)), ("sample_sum", _num(h.sample_sum))]
        for b in h.bucket:
            bf: _Fields = [
                ("cumulative_count", str(b.cumulative_count)),
                ("upper_bound", _num(b.upper_bound)),
            ]
            if b.exemplar is not None:
                bf.append(("exemplar", _exemplar_fields(b.exemplar)))
            sub.append(("bucket", bf))
        if h.created_timestamp is not None:
            sub.append(("created_timestamp", _timestamp_fields(h.created_timestamp)))
        fields.append(("histogram", sub))
    return fields


def _family_fields(family: MetricFamily) -> _Fields:
    fields: _Fields = []
    if family.name:
        fields.append(("name", _quote(family.name)))
    if family.help is not None:
        fields.append(("help", _quote(family.help)))
    type_name = family.type.name if isinstance(family.type, MetricType) else str(family.type)
    fields.append(("type", type_name))
    fields += [("metric", _metric_fields(m)) for m in family.metric]
    if family.unit is not None:
        fields.append(("unit", _quote(family.unit)))
    return fields


def _render_multiline(fields: _Fields, indent: int) -> list[str]:
    pad = "  " * indent
    lines: list[str] = []
    for key, value in fields:
        if isinstance(value, list):
            lines.append(f"{pad}{key}: {{")
            lines.extend(_render_multiline(value, indent + 1))
            lines.append(f"{pad}}}")
        else:
            lines.append(f"{pad}{key}: {value}")
    return lines


def _render_compact(fields: _Fields) -> str:
    parts = []
    for key, value in fields:
        if isinstance(value, list):
            parts.append(f"{key}:{{{_render_compact(value)}}}")
        else:
            parts.append(f"{key}:{value}")
    return " ".join(parts)


def format_text(family: MetricFamily) -> str:
    """Render ``family`` in the multi-line protocol buffer text format."""
    return "\n".join(_render_multiline(_family_fields(family), 0))


def format_compact_text(family: MetricFamily) -> str:
    """Render ``family`` in the single-line protocol buffer text format."""
    return _render_compact(_family_fields(family))