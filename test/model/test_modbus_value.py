import json
import math
from datetime import datetime, timezone

import pytest

from modbus2mqtt.model.enum.value_type_enum import ValueType
from modbus2mqtt.model.modbus_value import ModbusValue, TypedValue


class TestTypedValue:
    def test_when_int_in_range_then_accepted(self):
        assert TypedValue(ValueType.INT16, -32768).value == -32768
        assert TypedValue(ValueType.UINT32, 0xFFFFFFFF).value == 0xFFFFFFFF

    @pytest.mark.parametrize(
        "kind, value",
        [
            (ValueType.INT16, 32768),
            (ValueType.UINT16, -1),
            (ValueType.UINT32, 1 << 32),
        ],
    )
    def test_when_int_out_of_range_then_raises(self, kind, value):
        with pytest.raises(ValueError):
            TypedValue(kind, value)

    def test_when_bool_for_integer_kind_then_raises(self):
        with pytest.raises(TypeError):
            TypedValue(ValueType.UINT16, True)

    def test_when_int_for_float_kind_then_raises(self):
        with pytest.raises(TypeError):
            TypedValue(ValueType.FLOAT32, 42)

    def test_non_finite_float_is_rendered_as_string(self):
        assert TypedValue(ValueType.FLOAT32, math.nan).as_json_value() == "nan"
        assert TypedValue(ValueType.FLOAT32, math.inf).as_json_value() == "inf"
        assert TypedValue(ValueType.FLOAT32, 42.0).as_json_value() == 42.0


class TestModbusValue:
    def test_payload_minimal(self):
        value = ModbusValue(address=1, value=TypedValue(ValueType.UINT32, 127))

        assert value.to_payload() == {"address": 1, "type": "uint32", "value": 127}

    def test_payload_with_label_title_and_date(self):
        observed_at = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        value = ModbusValue(
            address=200,
            value=TypedValue(ValueType.FLOAT32, 50.0),
            label="ok",
            title="Power Value",
            observed_at=observed_at,
        )

        payload = json.loads(value.to_json())

        assert payload == {
            "address": 200,
            "type": "float32",
            "value": 50.0,
            "label": "ok",
            "title": "Power Value",
            "date": "2024-05-01T12:00:00+00:00",
        }

    def test_empty_title_is_omitted(self):
        value = ModbusValue(address=1, value=TypedValue(ValueType.INT16, 0), title="")
        assert "title" not in value.to_payload()
