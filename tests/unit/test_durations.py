import pytest

from stackup.exceptions import DescriptorError
from stackup.UTILS.durations import parse_duration


@pytest.mark.parametrize("value, seconds", [
    ("3s", 3.0),
    ("10s", 10.0),
    ("250ms", 0.25),
    ("1m30s", 90.0),
    ("1h", 3600.0),
    ("1.5s", 1.5),
    ("5", 5.0),
    (7, 7.0),
    (0.5, 0.5),
])
def test_parse_duration(value, seconds):
    assert parse_duration(value) == pytest.approx(seconds)


def test_missing_duration_uses_default():
    assert parse_duration(None, 30.0) == 30.0


@pytest.mark.parametrize("value", ["", "soon", "3 s", "3sx", "s3", True])
def test_invalid_duration(value):
    with pytest.raises(DescriptorError):
        parse_duration(value)
