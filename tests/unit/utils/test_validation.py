import pytest

from dripsim.domain.exceptions import CorruptedStateError
from dripsim.enums import WeatherCondition
from dripsim.utils.validation import enum_member, finite_number, number_in, restore_fields, strict_bool


@pytest.mark.parametrize("value", ["NaN", float("inf"), "-Infinity", None, True, "wet", [1]])
def test_finite_number_rejects(value):
    with pytest.raises(CorruptedStateError):
        finite_number(value, "moisture")


def test_finite_number_accepts_numeric_strings():
    assert finite_number(" 42.5 ", "moisture") == 42.5
    assert finite_number(7, "volume") == 7.0


def test_bounds():
    validate = number_in(0, 100)
    assert validate(0, "moisture") == 0.0
    with pytest.raises(CorruptedStateError):
        validate(100.5, "moisture")
    with pytest.raises(CorruptedStateError):
        number_in(0, exclusive_minimum=True)(0, "capacity")


def test_strict_bool():
    assert strict_bool(True, "auto") is True
    assert strict_bool(0, "auto") is False
    with pytest.raises(CorruptedStateError):
        strict_bool("true", "auto")


def test_enum_member():
    assert enum_member(WeatherCondition)("rain", "weather") == WeatherCondition.RAIN
    with pytest.raises(CorruptedStateError) as excinfo:
        enum_member(WeatherCondition)("hail", "weather")
    assert excinfo.value.field == "weather"


def test_restore_fields_resets_only_bad_fields():
    values, recovered = restore_fields(
        {"moisture": "NaN", "volume": 9},
        {
            "moisture": (45.0, number_in(0, 100)),
            "volume": (7.0, number_in(0)),
            "schedules": (list, lambda value, field: value),
        },
        entity="test",
    )
    assert values == {"moisture": 45.0, "volume": 9.0, "schedules": []}
    assert [err.field for err in recovered] == ["moisture"]
