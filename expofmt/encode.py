"""Content negotiation and encoders for the supported wire formats."""

from __future__ import annotations

import dataclasses
import io
from dataclasses import dataclass, field
from typing import Mapping, Optional

from . import formats
from .formats import (
    ESCAPING_KEY,
    FMT_OPENMETRICS_0_0_1,
    FMT_OPENMETRICS_1_0_0,
    FMT_PROTO_COMPACT,
    FMT_PROTO_DELIM,
    FMT_PROTO_TEXT,
    FMT_TEXT,
    HDR_ACCEPT,
    OPENMETRICS_TYPE,
    OPENMETRICS_VERSION_0_0_1,
    OPENMETRICS_VERSION_1_0_0,
    PROTO_PROTOCOL,
    PROTO_TYPE,
    TEXT_VERSION,
    EscapingScheme,
    Format,
    FormatType,
)
from .metricdata import (
    METRIC_NAME_LABEL,
    LabelPair,
    Metric,
    MetricFamily,
    is_valid_legacy_metric_name,
)
from .openmetrics import finalize_openmetrics, metric_family_to_openmetrics
from .protodelim import format_compact_text, format_text, write_delimited
from .text import metric_family_to_text

_KNOWN_ESCAPINGS = frozenset(scheme.value for scheme in EscapingScheme)

_PROTO_ENCODING_FORMATS = {
    "delimited": FMT_PROTO_DELIM,
    "text": FMT_PROTO_TEXT,
    "compact-text": FMT_PROTO_COMPACT,
}


@dataclass
class _AcceptEntry:
    type: str
    subtype: str
    q: float = 1.0
    params: dict[str, str] = field(default_factory=dict)


def _parse_accept(header: str) -> list[_AcceptEntry]:
    """Parse an Accept header into entries ordered by preference."""
    entries: list[_AcceptEntry] = []
    for part in header.split(","):
        media_range, *raw_params = part.split(";")
        pieces = media_range.split("/")
        main_type = pieces[0].strip(" ")
        if len(pieces) == 1 and main_type == "*":
            subtype = "*"
        elif len(pieces) == 2:
            subtype = pieces[1].strip(" ")
        else:
            continue
        entry = _AcceptEntry(main_type, subtype)
        for raw in raw_params:
            key, sep, value = raw.partition("=")
            if not sep:
                continue
            param_key = key.strip(" ")
            if param_key == "q":
                try:
                    entry.q = float(value)
                except ValueError:
                    entry.q = 0.0
            else:
                entry.params[param_key] = value.strip(" ")
        entries.append(entry)
    entries.sort(key=lambda e: (-e.q, e.type == "*", e.subtype == "*"))
    return entries


def _header(headers: Optional[Mapping[str, str]], name: str) -> str:
    for key, value in (headers or {}).items():
        if key.lower() == name.lower():
            return value
    return ""


def _negotiate(headers: Optional[Mapping[str, str]], include_openmetrics: bool) -> Format:
    escaping = f"; {ESCAPING_KEY}={formats.name_escaping_scheme}"
    for entry in _parse_accept(_header(headers, HDR_ACCEPT)):
        escape_param = entry.params.get(ESCAPING_KEY, "")
        if escape_param in _KNOWN_ESCAPINGS:
            escaping = f"; {ESCAPING_KEY}={escape_param}"
        version = entry.params.get("version", "")
        media_type = f"{entry.type}/{entry.subtype}"
        if media_type == PROTO_TYPE and entry.params.get("proto", "") == PROTO_PROTOCOL:
            chosen = _PROTO_ENCODING_FORMATS.get(entry.params.get("encoding", ""))
            if chosen is not None:
                return Format(chosen + escaping)
        if entry.type == "text" and entry.subtype == "plain" and version in (TEXT_VERSION, ""):
            return Format(FMT_TEXT + escaping)
        if include_openmetrics and media_type == OPENMETRICS_TYPE and version in (
            OPENMETRICS_VERSION_0_0_1,
            OPENMETRICS_VERSION_1_0_0,
            "",
        ):
            if version == OPENMETRICS_VERSION_1_0_0:
                return Format(FMT_OPENMETRICS_1_0_0 + escaping)
            return Format(FMT_OPENMETRICS_0_0_1 + escaping)
    return Format(FMT_TEXT + escaping)


def negotiate(headers: Optional[Mapping[str, str]]) -> Format:
    """Pick a format from the Accept header; never OpenMetrics. Defaults to text."""
    return _negotiate(headers, include_openmetrics=False)


def negotiate_including_openmetrics(headers: Optional[Mapping[str, str]]) -> Format:
    """Like :func:`negotiate`, but OpenMetrics may be chosen as well."""
    return _negotiate(headers, include_openmetrics=True)


def _is_legacy_rune(char: str, index: int) -> bool:
    return (
        ("a" <= char <= "z")
        or ("A" <= char <= "Z")
        or char in "_:"
        or ("0" <= char <= "9" and index > 0)
    )


def escape_name(name: str, scheme: EscapingScheme) -> str:
    """Turn ``name`` into a legacy-valid name according to ``scheme``."""
    if not name:
        return name
    if scheme is EscapingScheme.NO_ESCAPING:
        return name
    if scheme is EscapingScheme.UNDERSCORE_ESCAPING:
        if is_valid_legacy_metric_name(name):
            return name
        return "".join(c if _is_legacy_rune(c, i) else "_" for i, c in enumerate(name))
    if scheme is EscapingScheme.DOTS_ESCAPING:
        parts = []
        for i, c in enumerate(name):
            if c == "_":
                parts.append("__")
            elif c == ".":
                parts.append("_dot_")
            elif _is_legacy_rune(c, i):
                parts.append(c)
            else:
                parts.append("__")
        return "".join(parts)
    if scheme is EscapingScheme.VALUE_ENCODING_ESCAPING:
        if is_valid_legacy_metric_name(name):
            return name
        parts = ["U__"]
        for i, c in enumerate(name):
            code = ord(c)
            if c == "_":
                parts.append("__")
            elif _is_legacy_rune(c, i):
                parts.append(c)
            elif 0xD800 <= code <= 0xDFFF:
                parts.append("_FFFD_")
            else:
                parts.append(f"_{code:x}_")
        return "".join(parts)
    raise ValueError(f"invalid escaping scheme {scheme!r}")


def _metric_needs_escaping(metric: Metric) -> bool:
    for pair in metric.label:
        if pair.name == METRIC_NAME_LABEL and not is_valid_legacy_metric_name(pair.value):
            return True
        if not is_valid_legacy_metric_name(pair.name):
            return True
    return False


def _escape_label(pair: LabelPair, scheme: EscapingScheme) -> LabelPair:
    if pair.name == METRIC_NAME_LABEL:
        if is_valid_legacy_metric_name(pair.value):
            return pair
        return LabelPair(METRIC_NAME_LABEL, escape_name(pair.value, scheme))
    if is_valid_legacy_metric_name(pair.name):
        return pair
    return LabelPair(escape_name(pair.name, scheme), pair.value)


def escape_metric_family(family: MetricFamily, scheme: EscapingScheme) -> MetricFamily:
    """Return ``family`` with its metric and label names escaped by ``scheme``.

    With no escaping the family itself is returned; otherwise it is left untouched.
    """
    if scheme is EscapingScheme.NO_ESCAPING:
        return family
    if not family.name or is_valid_legacy_metric_name(family.name):
        name = family.name
    else:
        name = escape_name(family.name, scheme)
    metrics = [
        dataclasses.replace(m, label=[_escape_label(p, scheme) for p in m.label])
        if _metric_needs_escaping(m)
        else m
        for m in family.metric
    ]
    return MetricFamily(
        name=name, help=family.help, type=family.type, unit=family.unit, metric=metrics
    )


def _write(out, text: str) -> int:
    data = text.encode("utf-8")
    if isinstance(out, (io.RawIOBase, io.BufferedIOBase)):
        out.write(data)
    else:
        out.write(text)
    return len(data)


class Encoder:
    """Writes metric families to ``out`` in one format.

    Use as a context manager or call :meth:`close` when done: OpenMetrics
    needs a closing ``# EOF`` line.
    """

    def __init__(
        self,
        out,
        format: Format,
        *,
        with_created_lines: bool = False,
        with_unit: bool = False,
    ):
        fmt = Format(format)
        self.format = fmt
        self._out = out
        self._kind = fmt.format_type()
        self._scheme = fmt.to_escaping_scheme()
        self._with_created_lines = with_created_lines
        self._with_unit = with_unit
        self._closed = False
        if self._kind == FormatType.UNKNOWN:
            raise ValueError(f"unknown format {str(format)!r}")

    def encode(self, family: MetricFamily) -> int:
        """Write one family and return the number of bytes written."""
        if self._kind == FormatType.PROTO_DELIM:
            return write_delimited(self._out, family)
        escaped = escape_metric_family(family, self._scheme)
        if self._kind == FormatType.PROTO_COMPACT:
            return _write(self._out, format_compact_text(escaped) + "\n")
        if self._kind == FormatType.PROTO_TEXT:
            return _write(self._out, format_text(escaped) + "\n")
        if self._kind == FormatType.TEXT_PLAIN:
            return metric_family_to_text(self._out, escaped)
        return metric_family_to_openmetrics(
            self._out,
            escaped,
            with_created_lines=self._with_created_lines,
            with_unit=self._with_unit,
        )

    def close(self) -> int:
        """Finish the output; return the number of bytes written."""
        if self._closed:
            return 0
        self._closed = True
        if self._kind == FormatType.OPEN_METRICS:
            return finalize_openmetrics(self._out)
        return 0

    def __enter__(self) -> Encoder:
        return self

    def __exit__(self, *args) -> None:
        exc_type = args[0] if args else None
        if exc_type is None:
            self.close()


def new_encoder(
    out,
    format: Format,
    *,
    with_created_lines: bool = False,
    with_unit: bool = False,
) -> Encoder:
    """Return an encoder for ``format``; raise ValueError for an unknown format.

    The options only affect OpenMetrics output.
    """
    return Encoder(out, format, with_created_lines=with_created_lines, with_unit=with_unit)