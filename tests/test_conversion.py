"""ppb to µg/m³ conversion and rounding."""

from __future__ import annotations

import pytest

from aqbridge.domain.conversion import (
    KELVIN_OFFSET,
    MOLAR_MASS,
    PPB_FACTOR,
    molar_mass,
    ppb_to_micrograms,
    round_value,
)
from aqbridge.domain.errors import BridgeError, ConversionDomainError


def test_molar_mass_table() -> None:
    assert MOLAR_MASS == {
        "O3": 47.998,
        "SO2": 64.06,
        "NO2": 46.0055,
        "CO": 28.011,
        "H2S": 34.076,
    }


def test_unknown_species_weighs_nothing() -> None:
    assert molar_mass("UNKNOWN") == 0.0
    assert molar_mass("o3") == 0.0
    assert ppb_to_micrograms("UNKNOWN", 100, 20) == 0.0


def test_zero_ppb_is_zero() -> None:
    assert ppb_to_micrograms("O3", 0, 20) == 0.0


def test_conversion_formula() -> None:
    expected = 50 * PPB_FACTOR * 28.011 / (KELVIN_OFFSET + 25)

    assert ppb_to_micrograms("CO", 50, 25) == pytest.approx(expected)


def test_conversion_of_reference_reading() -> None:
    assert round_value(ppb_to_micrograms("O3", 40, 20)) == 79.82


def test_conversion_is_deterministic() -> None:
    assert ppb_to_micrograms("SO2", 17, -5) == ppb_to_micrograms("SO2", 17, -5)


def test_negative_ppb_is_passed_through() -> None:
    assert ppb_to_micrograms("NO2", -10, 20) < 0


def test_temperature_at_or_below_absolute_zero() -> None:
    with pytest.raises(ConversionDomainError) as excinfo:
        ppb_to_micrograms("O3", 40, -274)

    assert isinstance(excinfo.value, BridgeError)


def test_coldest_integer_temperature_still_converts() -> None:
    assert ppb_to_micrograms("O3", 1, -273) > 0


def test_round_value_half_up() -> None:
    # 0.125 is exact in binary; builtin round() would give 0.12
    assert round_value(0.125) == 0.13
    assert round_value(47.8271) == 47.83
    assert round_value(47.8249) == 47.82
    assert round_value(12.0) == 12.0


def test_round_value_other_precision() -> None:
    assert round_value(1.25, digits=1) == 1.3
    assert round_value(2.5, digits=0) == 3.0
