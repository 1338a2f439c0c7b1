"""Content types of the exposition formats and the parameters they carry."""

from __future__ import annotations

import enum

TEXT_VERSION = "0.0.4"
PROTO_TYPE = "application/vnd.google.protobuf"
PROTO_PROTOCOL = "io.prometheus.client.MetricFamily"
PROTO_FMT = PROTO_TYPE + "; proto=" + PROTO_PROTOCOL + ";"
OPENMETRICS_TYPE = "application/openmetrics-text"
OPENMETRICS_VERSION_0_0_1 = "0.0.1"
OPENMETRICS_VERSION_1_0_0 = "1.0.0"

ESCAPING_KEY = "escaping"

HDR_CONTENT_TYPE = "Content-Type"
HDR_ACCEPT = "Accept"


class FormatType(enum.IntEnum):
    """Overall category of a format string."""

    UNKNOWN = 0
    PROTO_COMPACT = 1
    PROTO_DELIM = 2
    PROTO_TEXT = 3
    TEXT_PLAIN = 4
    OPEN_METRICS = 5


class EscapingScheme(enum.Enum):
    """How names that are not legacy-valid are turned into legacy names."""

    NO_ESCAPING = "allow-utf-8"
    UNDERSCORE_ESCAPING = "underscores"
    DOTS_ESCAPING = "dots"
    VALUE_ENCODING_ESCAPING = "values"

    def __str__(self) -> str:
        return self.value


# Scheme used when a format does not name one (or names an unknown one).
name_escaping_scheme: EscapingScheme = EscapingScheme.UNDERSCORE_ESCAPING


def parse_escaping_scheme(value: str) -> EscapingScheme:
    """Return the escaping scheme named by ``value``; raise ValueError if unknown."""
    if value == "":
        raise ValueError("got empty string instead of escaping scheme")
    try:
        return EscapingScheme(value)
    except ValueError:
        raise ValueError(f"unknown format scheme {value}") from None


class Format(str):
    """An HTTP content type naming one of the wire formats."""

    __slots__ = ()

    def with_escaping_scheme(self, scheme: EscapingScheme) -> Format:
        """Return a copy with any escaping term replaced by ``scheme``."""
        terms = []
        for part in self.split(";"):
            tokens = part.split("=")
            if len(tokens) != 2:
                trimmed = part.strip()
                if trimmed:
                    terms.append(trimmed)
                continue
            if tokens[0].strip() != ESCAPING_KEY:
                terms.append(part.strip())
        terms.append(f"{ESCAPING_KEY}={scheme}")
        return Format("; ".join(terms))

    def format_type(self) -> FormatType:
        """Deduce the overall FormatType of this format."""
        media_type, *rest = self.split(";")
        params: dict[str, str] = {}
        for token in rest:
            args = token.split("=")
            if len(args) == 2:
                params[args[0].strip()] = args[1].strip()

        media_type = media_type.strip()
        if media_type == PROTO_TYPE:
            if params.get("proto") != PROTO_PROTOCOL:
                return FormatType.UNKNOWN
            return _PROTO_ENCODINGS.get(params.get("encoding", ""), FormatType.UNKNOWN)
        if media_type == OPENMETRICS_TYPE:
            if params.get("charset") != "utf-8":
                return FormatType.UNKNOWN
            return FormatType.OPEN_METRICS
        if media_type == "text/plain":
            if params.get("version", TEXT_VERSION) == TEXT_VERSION:
                return FormatType.TEXT_PLAIN
            return FormatType.UNKNOWN
        return FormatType.UNKNOWN

    def to_escaping_scheme(self) -> EscapingScheme:
        """Return the escaping scheme named in this format, or the default one."""
        for part in self.split(";"):
            tokens = part.split("=")
            if len(tokens) != 2:
                continue
            key, value = tokens[0].strip(), tokens[1].strip()
            if key == ESCAPING_KEY:
                try:
                    return parse_escaping_scheme(value)
                except ValueError:
                    return name_escaping_scheme
        return name_escaping_scheme


_PROTO_ENCODINGS = {
    "delimited": FormatType.PROTO_DELIM,
    "text": FormatType.PROTO_TEXT,
    "compact-text": FormatType.PROTO_COMPACT,
}

FMT_UNKNOWN = Format("<unknown>")
FMT_TEXT = Format("text/plain; version=" + TEXT_VERSION + "; charset=utf-8")
FMT_PROTO_DELIM = Format(PROTO_FMT + " encoding=delimited")
FMT_PROTO_TEXT = Format(PROTO_FMT + " encoding=text")
FMT_PROTO_COMPACT = Format(PROTO_FMT + " encoding=compact-text")
FMT_OPENMETRICS_1_0_0 = Format(
    OPENMETRICS_TYPE + "; version=" + OPENMETRICS_VERSION_1_0_0 + "; charset=utf-8"
)
FMT_OPENMETRICS_0_0_1 = Format(
    OPENMETRICS_TYPE + "; version=" + OPENMETRICS_VERSION_0_0_1 + "; charset=utf-8"
)

_NEWEST_FORMATS = {
    FormatType.PROTO_COMPACT: FMT_PROTO_COMPACT,
    FormatType.PROTO_DELIM: FMT_PROTO_DELIM,
    FormatType.PROTO_TEXT: FMT_PROTO_TEXT,
    FormatType.TEXT_PLAIN: FMT_TEXT,
    FormatType.OPEN_METRICS: FMT_OPENMETRICS_1_0_0,
}


def new_format(format_type: FormatType) -> Format:
    """Return the latest Format of the given type."""
    return _NEWEST_FORMATS.get(format_type, FMT_UNKNOWN)


def new_open_metrics_format(version: str) -> Format:
    """Return the OpenMetrics Format for ``version``; raise ValueError if unknown."""
    if version == OPENMETRICS_VERSION_0_0_1:
        return FMT_OPENMETRICS_0_0_1
    if version == OPENMETRICS_VERSION_1_0_0:
        return FMT_OPENMETRICS_1_0_0
    raise ValueError("unknown open metrics version string")