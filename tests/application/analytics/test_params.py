import pytest

from kairos.application.analytics.params import coerce_int, coerce_threshold


@pytest.mark.parametrize(
    "value,expected",
    [
        (12, 12),
        (0, 1),
        (60, 52),
        (-3, 12),
        ("abc", 12),
        (None, 12),
        ("8", 8),
        (float("nan"), 12),
        (float("inf"), 52),
    ],
)
def test_coerce_int_clamps_and_falls_back(value, expected):
    assert coerce_int(value, default=12, minimum=1, maximum=52) == expected


def test_coerce_threshold():
    assert coerce_threshold(0.7, 0.4) == 0.7
    assert coerce_threshold(1.5, 0.4) == 1.0
    assert coerce_threshold(-0.2, 0.4) == 0.4
    assert coerce_threshold("high", 0.4) == 0.4
    assert coerce_threshold(0, 0.4) == 0.0
