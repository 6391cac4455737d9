import pytest

from modbus2mqtt.exception import (
    BitRangeOutOfBounds,
    ConfigurationError,
    InvalidBitRangeOrder,
    InvalidBitRangeSyntax,
)
from modbus2mqtt.model.bit_range import BitRange


class TestBitRangeParse:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("6", BitRange(6, 6)),
            ("0-1", BitRange(0, 1)),
            ("2-5", BitRange(2, 5)),
            (" 3 - 7 ", BitRange(3, 7)),
            ("0-15", BitRange(0, 15)),
        ],
    )
    def test_when_valid_spec_then_parsed(self, text, expected):
        assert BitRange.parse(text, 16) == expected

    @pytest.mark.parametrize("text", ["", "a", "1-", "-1", "1-2-3", "1,2", "0x3"])
    def test_when_bad_syntax_then_raises(self, text):
        with pytest.raises(InvalidBitRangeSyntax) as exc_info:
            BitRange.parse(text, 16)

        assert exc_info.value.rule == "syntax"
        assert exc_info.value.field == "bits"

    def test_when_start_after_end_then_raises_order_error(self):
        with pytest.raises(InvalidBitRangeOrder):
            BitRange.parse("5-2", 16)

    def test_when_end_reaches_bit_width_then_out_of_bounds(self):
        """Valid indices of a 16-bit value are 0..15"""
        with pytest.raises(BitRangeOutOfBounds) as exc_info:
            BitRange.parse("16", 16)

        assert exc_info.value.bit_width == 16
        assert BitRange.parse("16", 32) == BitRange(16, 16)

    def test_parse_errors_are_configuration_errors(self):
        with pytest.raises(ConfigurationError):
            BitRange.parse("9-40", 32)

    def test_str_round_trips_through_parse(self):
        for text in ["0", "6", "2-5", "10-15"]:
            assert str(BitRange.parse(text, 16)) == text


class TestBitRangeBehaviour:
    def test_adjacent_ranges_do_not_overlap(self):
        assert not BitRange(2, 5).overlaps(BitRange(6, 6))
        assert not BitRange(6, 6).overlaps(BitRange(2, 5))

    def test_overlapping_ranges_detected(self):
        assert BitRange(2, 5).overlaps(BitRange(5, 8))
        assert BitRange(0, 15).overlaps(BitRange(3, 3))

    def test_width_and_mask(self):
        bit_range = BitRange(2, 5)
        assert bit_range.width == 4
        assert bit_range.mask == 0b1111

    def test_extract(self):
        value = 0b1000001
        assert BitRange(0, 1).extract(value) == 1
        assert BitRange(2, 5).extract(value) == 0
        assert BitRange(6, 6).extract(value) == 1

    def test_sorted_by_start(self):
        ranges = [BitRange(6, 6), BitRange(0, 1), BitRange(2, 5)]
        assert sorted(ranges) == [BitRange(0, 1), BitRange(2, 5), BitRange(6, 6)]

    def test_direct_construction_rejects_reversed_range(self):
        with pytest.raises(ValueError):
            BitRange(4, 1)
