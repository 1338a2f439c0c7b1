import io

import pytest

from expofmt import formats
from expofmt.encode import (
    Encoder,
    escape_metric_family,
    escape_name,
    negotiate,
    negotiate_including_openmetrics,
    new_encoder,
)
from expofmt.formats import (
    FMT_OPENMETRICS_0_0_1,
    FMT_OPENMETRICS_1_0_0,
    FMT_PROTO_COMPACT,
    FMT_PROTO_DELIM,
    FMT_PROTO_TEXT,
    FMT_TEXT,
    EscapingScheme,
    Format,
)
from expofmt.metricdata import LabelPair, Metric, MetricFamily, MetricType, Untyped
from expofmt.protodelim import read_delimited

PREFIX = "application/vnd.google.protobuf;proto=io.prometheus.client.MetricFamily"
PROTO = "application/vnd.google.protobuf; proto=io.prometheus.client.MetricFamily"


def _metric1():
    return MetricFamily(
        name="foo_metric",
        type=MetricType.UNTYPED,
        unit="seconds",
        metric=[Metric(untyped=Untyped(1.234))],
    )


def _dotted():
    return MetricFamily(
        name="foo.metric",
        type=MetricType.UNTYPED,
        metric=[
            Metric(untyped=Untyped(1.234)),
            Metric(
                label=[LabelPair("dotted.label.name", "my.label.value")],
                untyped=Untyped(8),
            ),
        ],
    )


@pytest.mark.parametrize(
    "accept, expected",
    [
        (PREFIX + ";encoding=delimited", PROTO + "; encoding=delimited; escaping=underscores"),
        (PREFIX + ";encoding=text", PROTO + "; encoding=text; escaping=underscores"),
        (
            PREFIX + ";encoding=compact-text",
            PROTO + "; encoding=compact-text; escaping=underscores",
        ),
        ("text/plain;version=0.0.4", "text/plain; version=0.0.4; charset=utf-8; escaping=underscores"),
        (
            PREFIX + ";encoding=delimited; escaping=allow-utf-8;",
            PROTO + "; encoding=delimited; escaping=allow-utf-8",
        ),
        (
            PREFIX + ";encoding=text; escaping=allow-utf-8;",
            PROTO + "; encoding=text; escaping=allow-utf-8",
        ),
        (
            PREFIX + ";encoding=compact-text; escaping=allow-utf-8;",
            PROTO + "; encoding=compact-text; escaping=allow-utf-8",
        ),
        ("text/plain;version=0.0.4;", "text/plain; version=0.0.4; charset=utf-8; escaping=underscores"),
        (
            "text/plain;version=0.0.4; escaping=values;",
            "text/plain; version=0.0.4; charset=utf-8; escaping=values",
        ),
    ],
)
def test_negotiate(monkeypatch, accept, expected):
    monkeypatch.setattr(formats, "name_escaping_scheme", EscapingScheme.UNDERSCORE_ESCAPING)
    assert negotiate({"Accept": accept}) == expected


@pytest.mark.parametrize(
    "accept, expected",
    [
        ("application/openmetrics-text",
         "application/openmetrics-text; version=0.0.1; charset=utf-8; escaping=values"),
        ("application/openmetrics-text;version=0.0.1; escaping=underscores",
         "application/openmetrics-text; version=0.0.1; charset=utf-8; escaping=underscores"),
        ("application/openmetrics-text;version=1.0.0",
         "application/openmetrics-text; version=1.0.0; charset=utf-8; escaping=values"),
        ("application/openmetrics-text;version=0.0.1",
         "application/openmetrics-text; version=0.0.1; charset=utf-8; escaping=values"),
        ("application/openmetrics-text;version=1.0.0; escaping=values;",
         "application/openmetrics-text; version=1.0.0; charset=utf-8; escaping=values"),
        ("application/openmetrics-text;version=0.0.4",
         "text/plain; version=0.0.4; charset=utf-8; escaping=values"),
        (PREFIX + ";encoding=compact-text; escaping=underscores",
         PROTO + "; encoding=compact-text; escaping=underscores"),
        ("text/plain;version=0.0.4",
         "text/plain; version=0.0.4; charset=utf-8; escaping=values"),
        ("text/plain;version=0.0.4; escaping=allow-utf-8",
         "text/plain; version=0.0.4; charset=utf-8; escaping=allow-utf-8"),
        (PREFIX + ";encoding=delimited; escaping=allow-utf-8;",
         PROTO + "; encoding=delimited; escaping=allow-utf-8"),
        (PREFIX + ";encoding=text; escaping=allow-utf-8;",
         PROTO + "; encoding=text; escaping=allow-utf-8"),
        (PREFIX + ";encoding=compact-text; escaping=allow-utf-8;",
         PROTO + "; encoding=compact-text; escaping=allow-utf-8"),
        (PREFIX + ";encoding=delimited; escaping=underscores;",
         PROTO + "; encoding=delimited; escaping=underscores"),
        (PREFIX + ";encoding=text; escaping=underscores;",
         PROTO + "; encoding=text; escaping=underscores"),
        (PREFIX + ";encoding=compact-text; escaping=underscores;",
         PROTO + "; encoding=compact-text; escaping=underscores"),
    ],
)
def test_negotiate_openmetrics(monkeypatch, accept, expected):
    monkeypatch.setattr(
        formats, "name_escaping_scheme", EscapingScheme.VALUE_ENCODING_ESCAPING
    )
    assert negotiate_including_openmetrics({"Accept": accept}) == expected


def test_negotiate_never_picks_openmetrics(monkeypatch):
    monkeypatch.setattr(formats, "name_escaping_scheme", EscapingScheme.UNDERSCORE_ESCAPING)
    result = negotiate({"Accept": "application/openmetrics-text;version=1.0.0"})
    assert result == "text/plain; version=0.0.4; charset=utf-8; escaping=underscores"


def test_negotiate_without_header_and_lowercase_key(monkeypatch):
    monkeypatch.setattr(formats, "name_escaping_scheme", EscapingScheme.UNDERSCORE_ESCAPING)
    assert negotiate(None) == "text/plain; version=0.0.4; charset=utf-8; escaping=underscores"
    got = negotiate({"accept": PREFIX + ";encoding=delimited"})
    assert got == PROTO + "; encoding=delimited; escaping=underscores"


def test_negotiate_prefers_higher_quality(monkeypatch):
    monkeypatch.setattr(formats, "name_escaping_scheme", EscapingScheme.UNDERSCORE_ESCAPING)
    header = "text/plain;version=0.0.4;q=0.5," + PREFIX + ";encoding=delimited;q=0.9"
    assert negotiate({"Accept": header}).format_type() == formats.FormatType.PROTO_DELIM


@pytest.mark.parametrize(
    "fmt, kwargs, expected",
    [
        (FMT_TEXT, {}, "# TYPE foo_metric untyped\nfoo_metric 1.234\n"),
        (FMT_OPENMETRICS_0_0_1, {}, "# TYPE foo_metric unknown\nfoo_metric 1.234\n"),
        (FMT_OPENMETRICS_1_0_0, {}, "# TYPE foo_metric unknown\nfoo_metric 1.234\n"),
        (
            FMT_OPENMETRICS_0_0_1,
            {"with_unit": True},
            "# TYPE foo_metric_seconds unknown\n"
            "# UNIT foo_metric_seconds seconds\n"
            "foo_metric_seconds 1.234\n",
        ),
    ],
)
def test_encode_text_formats(fmt, kwargs, expected):
    out = io.StringIO()
    written = new_encoder(out, fmt, **kwargs).encode(_metric1())
    assert out.getvalue() == expected
    assert written == len(expected)


def test_encode_proto_delim_round_trip():
    out = io.BytesIO()
    new_encoder(out, FMT_PROTO_DELIM).encode(_metric1())
    assert read_delimited(io.BytesIO(out.getvalue())) == _metric1()


def test_encode_proto_compact():
    out = io.StringIO()
    new_encoder(out, FMT_PROTO_COMPACT).encode(_metric1())
    expected = 'name:"foo_metric" type:UNTYPED metric:{untyped:{value:1.234}} unit:"seconds"\n'
    assert out.getvalue() == expected


def test_encode_proto_text():
    out = io.StringIO()
    new_encoder(out, FMT_PROTO_TEXT).encode(_metric1())
    expected = (
        'name: "foo_metric"\n'
        "type: UNTYPED\n"
        "metric: {\n"
        "  untyped: {\n"
        "    value: 1.234\n"
        "  }\n"
        "}\n"
        'unit: "seconds"\n'
    )
    assert out.getvalue() == expected


def test_escaped_encode_text(monkeypatch):
    monkeypatch.setattr(formats, "name_escaping_scheme", EscapingScheme.UNDERSCORE_ESCAPING)
    out = io.StringIO()
    new_encoder(out, FMT_TEXT).encode(_dotted())
    assert out.getvalue() == (
        "# TYPE foo_metric untyped\n"
        "foo_metric 1.234\n"
        'foo_metric{dotted_label_name="my.label.value"} 8\n'
    )


def test_escaped_encode_delim_keeps_names():
    out = io.BytesIO()
    new_encoder(out, Format(FMT_PROTO_DELIM + "; escaping=underscores")).encode(_dotted())
    decoded = read_delimited(io.BytesIO(out.getvalue()))
    assert decoded.name == "foo.metric"
    assert decoded.metric[1].label[0].name == "dotted.label.name"


def test_escaped_encode_compact(monkeypatch):
    monkeypatch.setattr(formats, "name_escaping_scheme", EscapingScheme.UNDERSCORE_ESCAPING)
    out = io.StringIO()
    new_encoder(out, FMT_PROTO_COMPACT).encode(_dotted())
    text = out.getvalue()
    assert 'name:"foo_metric"' in text
    assert 'name:"dotted_label_name"' in text
    assert 'value:"my.label.value"' in text


def test_encode_without_escaping():
    out = io.StringIO()
    fmt = FMT_TEXT.with_escaping_scheme(EscapingScheme.NO_ESCAPING)
    new_encoder(out, fmt).encode(_dotted())
    assert out.getvalue() == (
        '# TYPE "foo.metric" untyped\n'
        '{"foo.metric"} 1.234\n'
        '{"foo.metric","dotted.label.name"="my.label.value"} 8\n'
    )


def test_openmetrics_context_manager_writes_eof():
    out = io.StringIO()
    with new_encoder(out, FMT_OPENMETRICS_1_0_0) as enc:
        enc.encode(_metric1())
    assert out.getvalue() == "# TYPE foo_metric unknown\nfoo_metric 1.234\n# EOF\n"


def test_close_returns_bytes_and_is_idempotent():
    out = io.StringIO()
    enc = Encoder(out, FMT_OPENMETRICS_1_0_0)
    assert enc.close() == 6
    assert enc.close() == 0
    assert out.getvalue() == "# EOF\n"


def test_close_of_text_encoder_writes_nothing():
    out = io.StringIO()
    enc = new_encoder(out, FMT_TEXT)
    assert enc.close() == 0
    assert out.getvalue() == ""


def test_unknown_format_raises():
    with pytest.raises(ValueError, match="unknown format"):
        new_encoder(io.StringIO(), Format("gobbledygook"))


def test_text_encoder_propagates_errors():
    enc = new_encoder(io.StringIO(), FMT_TEXT)
    with pytest.raises(ValueError, match="MetricFamily has no metrics"):
        enc.encode(MetricFamily(name="x", type=MetricType.GAUGE))


@pytest.mark.parametrize(
    "name, scheme, expected",
    [
        ("", EscapingScheme.UNDERSCORE_ESCAPING, ""),
        ("foo.bar", EscapingScheme.NO_ESCAPING, "foo.bar"),
        ("foo_bar", EscapingScheme.UNDERSCORE_ESCAPING, "foo_bar"),
        ("foo.bar", EscapingScheme.UNDERSCORE_ESCAPING, "foo_bar"),
        ("1foo", EscapingScheme.UNDERSCORE_ESCAPING, "_foo"),
        ("foo.bar_baz", EscapingScheme.DOTS_ESCAPING, "foo_dot_bar__baz"),
        ("foo bar", EscapingScheme.DOTS_ESCAPING, "foo__bar"),
        ("foo_bar", EscapingScheme.VALUE_ENCODING_ESCAPING, "foo_bar"),
        ("foo.bar", EscapingScheme.VALUE_ENCODING_ESCAPING, "U__foo_2e_bar"),
        ("a_b.c", EscapingScheme.VALUE_ENCODING_ESCAPING, "U__a__b_2e_c"),
        ("a\U0001F600", EscapingScheme.VALUE_ENCODING_ESCAPING, "U__a_1f600_"),
    ],
)
def test_escape_name(name, scheme, expected):
    assert escape_name(name, scheme) == expected


def test_escape_metric_family_no_escaping_returns_same():
    family = _dotted()
    assert escape_metric_family(family, EscapingScheme.NO_ESCAPING) is family


def test_escape_metric_family_escapes_names_and_keeps_input():
    family = MetricFamily(
        name="my.metric",
        help="help",
        type=MetricType.GAUGE,
        metric=[
            Metric(label=[LabelPair("__name__", "my.metric"), LabelPair("a.b", "v.w")]),
            Metric(label=[LabelPair("ok", "x.y")]),
        ],
    )
    escaped = escape_metric_family(family, EscapingScheme.UNDERSCORE_ESCAPING)
    assert escaped.name == "my_metric"
    assert escaped.help == "help"
    assert escaped.type == MetricType.GAUGE
    assert escaped.metric[0].label == [LabelPair("__name__", "my_metric"), LabelPair("a_b", "v.w")]
    assert escaped.metric[1] is family.metric[1]
    assert family.name == "my.metric"
    assert family.metric[0].label[1].name == "a.b"