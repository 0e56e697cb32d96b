import pytest

from layout_types import (
    MIN_STREAM_BUFFER_SIZE, SizeKind, SizeSpec, format_addr, format_size, parse_addr, parse_size
)


def test_parse_size_suffixes():
    assert parse_size("260") == 260
    assert parse_size("4K") == 4096
    assert parse_size("2M") == 2 * 1024 * 1024
    assert parse_size(512) == 512


def test_parse_size_radix():
    assert parse_size("0x100") == 256
    assert parse_size("0X20") == 32
    assert parse_size("010") == 8
    assert parse_size("0") == 0
    assert parse_size("0x10K") == 16 * 1024


@pytest.mark.parametrize("value", ["", "K", "abc", "4G", "-4", "0x", "099", "1.5K", "0x100000000", True])
def test_parse_size_rejects_invalid(value):
    with pytest.raises(ValueError):
        parse_size(value)


def test_format_size_picks_smallest_exact_suffix():
    assert format_size(4096) == "4K"
    assert format_size(1024 * 1024) == "1M"
    assert format_size(3 * 1024 * 1024) == "3M"
    assert format_size(1536) == "1536"
    assert format_size(0) == "0"
    for size in [0, 4, 260, 1024, 15696, 20 * 1024, 1024 * 1024]:
        assert parse_size(format_size(size)) == size


def test_addresses():
    assert parse_addr(0x20000000) == 0x20000000
    assert parse_addr("0x08000000") == 0x08000000
    assert format_addr(0x20000000) == "0x20000000"
    assert format_addr(4) == "0x00000004"
    with pytest.raises(ValueError):
        parse_addr("main")


def test_size_spec_parse():
    fixed = SizeSpec.parse("4K")
    assert fixed.kind == SizeKind.FIXED
    assert fixed.is_fixed and not fixed.is_proportional
    assert fixed.fixed_value == 4096
    assert fixed.fraction is None

    flexible = SizeSpec.parse("12.5%")
    assert flexible.is_proportional
    assert flexible.fraction == pytest.approx(0.125)
    assert flexible.fixed_value is None


def test_size_spec_str():
    assert str(SizeSpec.parse("4096")) == "4K"
    assert str(SizeSpec.parse("25%")) == "25.00%"
    assert str(SizeSpec.parse("12.5%")) == "12.50%"
    assert SizeSpec.parse(str(SizeSpec.parse("87.5%"))) == SizeSpec.parse("87.5%")


@pytest.mark.parametrize("value", ["0%", "-5%", "nan%", "inf%", "abc%", "%"])
def test_size_spec_rejects_invalid_fraction(value):
    with pytest.raises(ValueError):
        SizeSpec.parse(value)


def test_min_stream_buffer_size():
    assert MIN_STREAM_BUFFER_SIZE == 28
