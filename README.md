# expofmt

`expofmt` writes metric families in the common metrics exposition formats. The formats are:

* the classic text format (`text/plain; version=0.0.4`),
* OpenMetrics text (`application/openmetrics-text`, versions 0.0.1 and 1.0.0),
* length-delimited protobuf, protobuf text and compact protobuf text.

It can read length-delimited protobuf back in. It also handles HTTP content negotiation and escaping of metric and label names. Decoded metric families can be turned into flat samples.

It needs only the standard library.

## Installation

```
pip install expofmt
```

## Metric families

The data model lives in `expofmt.metricdata`. It has these classes:

* `MetricFamily`, with a name, help, type, unit and a list of metrics.
* `Metric`, with labels, one value holder and an optional `timestamp_ms`.
* The value holders `Counter`, `Gauge`, `Untyped`, `Summary` and `Histogram`.
* The parts of those holders: `Quantile`, `Bucket`, `Exemplar` and `LabelPair`.
* `Sample`, a flat sample.
* The enums `MetricType` and `ValidationScheme`.

The module also provides validation helpers:

* `is_valid_legacy_metric_name(name)`
* `is_valid_metric_name(name, scheme)`
* `is_valid_label_name(name, scheme)`
* `is_valid_label_value(value)`

## Writing the text format

```python
import io

from expofmt.metricdata import Gauge, LabelPair, Metric, MetricFamily, MetricType
from expofmt.text import metric_family_to_text

family = MetricFamily(
    name="queue_depth",
    help="Items waiting in the queue.",
    type=MetricType.GAUGE,
    metric=[Metric(label=[LabelPair("queue", "default")], gauge=Gauge(7))],
)

out = io.StringIO()
written = metric_family_to_text(out, family)
print(out.getvalue())
```

This prints:

```
# HELP queue_depth Items waiting in the queue.
# TYPE queue_depth gauge
queue_depth{queue="default"} 7
```

`metric_family_to_text` accepts either a text stream or a binary stream. It returns the number of UTF-8 bytes written.

It raises `ValueError` in these cases:

* the family has no metrics;
* the family has no name;
* the family's type is unknown;
* a metric lacks the value holder that the family's type requires.

Names that are not legacy-valid are written quoted. If a metric name is not legacy-valid, it goes inside the braces, as in `{"my.metric",label="v"} 1`.

`expofmt.text` also exposes the helpers `escape_string`, `format_name` and `format_float`.

## Writing OpenMetrics

`expofmt.openmetrics.metric_family_to_openmetrics(out, family, *, with_created_lines=False, with_unit=False)` writes one family. Call `finalize_openmetrics(out)` after the last family to write the closing `# EOF` line.

It differs from the text format in these ways:

* Floats always carry a `.` or an exponent, as in `42.0`.
* Counter and bucket counts are written as integers.
* Timestamps are given in seconds.
* A counter whose name ends in `_total` has the suffix left off its `# HELP`, `# TYPE` and `# UNIT` lines.
* A counter without the `_total` suffix is typed `unknown`.
* With `with_unit=True`, a `# UNIT` line is written and the unit is appended to the name if it is not already there.
* With `with_created_lines=True`, `_created` lines are written for counters, summaries and histograms that have a created timestamp.
* Exemplars that have labels are written after the sample.

## Protobuf

`expofmt.protodelim` provides these functions:

* `encode_metric_family` serializes a family to protobuf bytes.
* `decode_metric_family` parses protobuf bytes into a family.
* `write_delimited` writes a family with a varint length prefix.
* `read_delimited` reads one length-prefixed family. It returns `None` at a clean end of stream.
* `format_text` and `format_compact_text` render a family in the multi-line or single-line protobuf text form.

## Content negotiation and encoders

```python
from expofmt.encode import negotiate, new_encoder

fmt = negotiate({"Accept": "text/plain;version=0.0.4"})
with new_encoder(out, fmt) as encoder:
    encoder.encode(family)
```

`negotiate(headers)` never picks OpenMetrics; `negotiate_including_openmetrics(headers)` does.

Both functions add an `escaping=` term to the format they return. The term is one of the following:

* the scheme asked for in the Accept header, if that scheme is known;
* otherwise `expofmt.formats.name_escaping_scheme`, which defaults to `underscores`.

If nothing suitable is accepted, the text format is returned.

`new_encoder(out, format, *, with_created_lines=False, with_unit=False)` returns an `Encoder`. It raises `ValueError` for an unknown format. The keyword options only affect OpenMetrics output.

For every format except delimited protobuf, the encoder first escapes names with `escape_metric_family(family, scheme)`, using the format's escaping scheme. Delimited protobuf is written unescaped. `escape_name(name, scheme)` escapes a single name.

`Encoder.encode(family)` returns the bytes written. `Encoder.close()` writes the OpenMetrics `# EOF` line where the format needs one. Used as a context manager, the encoder closes itself when the block ends without an exception.

## Formats

`expofmt.formats.Format` is a `str` subclass for content types. It has these methods:

* `format_type()` returns a `FormatType`.
* `to_escaping_scheme()` returns the `EscapingScheme` named in the format, or the default scheme.
* `with_escaping_scheme(scheme)` returns a copy that has exactly one escaping term.

These functions build or read the standard content types:

* `new_format(format_type)` builds the standard content type for a format type.
* `new_open_metrics_format(version)` builds the OpenMetrics content type for a version. It raises `ValueError` for an unknown version.
* `parse_escaping_scheme(value)` turns a name into an `EscapingScheme`.

The standard content types are also available as constants, such as `FMT_TEXT`, `FMT_PROTO_DELIM` and `FMT_OPENMETRICS_1_0_0`.

## Reading metrics

```python
from expofmt.decode import DecodeOptions, SampleDecoder, new_decoder, response_format

fmt = response_format({"Content-Type": content_type})
decoder = new_decoder(stream, fmt)
for samples in SampleDecoder(decoder, DecodeOptions(timestamp=0)):
    for sample in samples:
        print(sample)
```

`response_format(headers)` recognises the delimited protobuf and text content types and returns `FMT_UNKNOWN` for anything else.

`new_decoder` returns a `ProtoDecoder`. This is only possible for the delimited protobuf format; any other format raises `ValueError`.

`ProtoDecoder.decode()` does the following:

* It raises `EOFError` at the end of the stream.
* It raises `ValueError` for a metric name or label name that is invalid under its `ValidationScheme` (UTF-8 by default).
* It raises `ValueError` for an invalid label value.

Iterating over a `ProtoDecoder` yields families until the end of the stream.

`extract_samples(options, *families)` flattens families that are already decoded into samples:

* summaries give one sample per quantile, plus `_sum` and `_count`;
* histograms give one sample per bucket, plus `_sum` and `_count`;
* a histogram with no `+Inf` bucket gets one added.

Samples without their own timestamp get `options.timestamp`. `extract_samples` works through every family even when one fails. If any did fail, it raises `SampleExtractionError` at the end, and the error's `samples` attribute holds what was collected.

## What this package does not do

* It does not parse the text or OpenMetrics exposition formats. It can only write them. Of the wire formats, only delimited protobuf can be read.
* It has no HTTP server or client, and no command-line tool. Negotiation works on plain header mappings that you supply.