import pytest

from expofmt.metricdata import (
    Bucket,
    Counter,
    Histogram,
    LabelPair,
    Metric,
    MetricFamily,
    MetricType,
    Sample,
    Summary,
    ValidationScheme,
    is_valid_label_name,
    is_valid_label_value,
    is_valid_legacy_metric_name,
    is_valid_metric_name,
)


def test_metric_type_wire_numbers():
    # Numbers as they appear in encoded families (field 3 of MetricFamily).
    assert MetricType(0) is MetricType.COUNTER
    assert MetricType(1) is MetricType.GAUGE
    assert MetricType(2) is MetricType.SUMMARY
    assert MetricType(4) is MetricType.HISTOGRAM


def test_unset_family_type_is_counter():
    family = MetricFamily(name="name", help="doc string")
    assert family.type is MetricType.COUNTER


def test_default_lists_are_not_shared():
    first, second = Metric(), Metric()
    first.label.append(LabelPair("a", "b"))
    assert second.label == []
    h1, h2 = Histogram(), Histogram()
    h1.bucket.append(Bucket(upper_bound=100, cumulative_count=123))
    assert h2.bucket == []
    s1, s2 = Summary(), Summary()
    s1.quantile.append(None)
    assert s2.quantile == []


def test_family_equality_is_structural():
    a = MetricFamily(name="foo", metric=[Metric(counter=Counter(value=4711))])
    b = MetricFamily(name="foo", metric=[Metric(counter=Counter(value=4711))])
    assert a == b
    b.metric[0].counter.value = 3.14
    assert a != b
    assert b.metric[0].counter.value == 3.14


def test_sample_equality():
    s = Sample(metric={"__name__": "foo"}, value=4711, timestamp=42)
    assert s == Sample(metric={"__name__": "foo"}, value=4711, timestamp=42)
    assert s != Sample(metric={"__name__": "foo"}, value=4711, timestamp=43)


@pytest.mark.parametrize("name", ["request_count", "request_duration_microseconds", "foos_total"])
def test_legacy_metric_names_valid(name):
    assert is_valid_legacy_metric_name(name)
    assert is_valid_metric_name(name, ValidationScheme.LEGACY)
    assert is_valid_metric_name(name, ValidationScheme.UTF8)


@pytest.mark.parametrize("name", ["gauge.name", "name.with.dots", "gauge.name\""])
def test_dotted_metric_names_need_utf8(name):
    assert not is_valid_legacy_metric_name(name)
    assert not is_valid_metric_name(name, ValidationScheme.LEGACY)
    assert is_valid_metric_name(name, ValidationScheme.UTF8)


def test_colon_allowed_in_metric_name_but_not_label_name():
    assert is_valid_legacy_metric_name("job:rate")
    assert not is_valid_label_name("job:rate", ValidationScheme.LEGACY)


def test_leading_digit_rejected_by_legacy_rules():
    assert not is_valid_legacy_metric_name("1abc")
    assert not is_valid_label_name("1abc", ValidationScheme.LEGACY)
    assert is_valid_label_name("1abc", ValidationScheme.UTF8)


def test_empty_names_invalid():
    for scheme in ValidationScheme:
        assert not is_valid_metric_name("", scheme)
        assert not is_valid_label_name("", scheme)
    assert not is_valid_legacy_metric_name("")


@pytest.mark.parametrize("name", ["some_!abel_name", "name.1", "name*2"])
def test_label_names_need_utf8(name):
    assert not is_valid_label_name(name, ValidationScheme.LEGACY)
    assert is_valid_label_name(name, ValidationScheme.UTF8)


def test_plain_label_name_valid_everywhere():
    for scheme in ValidationScheme:
        assert is_valid_label_name("some_label_name", scheme)


def test_label_values():
    assert is_valid_label_value("Björn")
    assert is_valid_label_value("佖佥")
    assert is_valid_label_value("val with\nnew line")
    assert is_valid_label_value("")
    assert not is_valid_label_value("bad\ud800")


def test_surrogate_names_invalid_under_utf8():
    assert not is_valid_metric_name("x\udfff", ValidationScheme.UTF8)
    assert not is_valid_label_name("x\udfff", ValidationScheme.UTF8)


def test_unknown_scheme_rejected():
    with pytest.raises(ValueError):
        is_valid_metric_name("foo", "bogus")
    with pytest.raises(ValueError):
        is_valid_label_name("foo", "bogus")