from __future__ import annotations
import math

from .errors import ConversionDomainError

# g/mol
MOLAR_MASS: dict[str, float] = {
    "O3": 47.998,
    "SO2": 64.06,
    "NO2": 46.0055,
    "CO": 28.011,
    "H2S": 34.076,
}

PPB_FACTOR = 12.187
KELVIN_OFFSET = 273.15


def molar_mass(species: str) -> float:
    """Unknown species weigh 0, which zeroes the converted value."""
    return MOLAR_MASS.get(species, 0.0)


def ppb_to_micrograms(species: str, ppb: int, temperature_c: int) -> float:
    """
    Convert a gas concentration from ppb to µg/m³ at the given temperature.

    Result is unrounded; see round_value.
    """
    kelvin = KELVIN_OFFSET + temperature_c
    if kelvin <= 0:
        raise ConversionDomainError(f"temperature {temperature_c} C is at or below absolute zero")
    return (ppb * PPB_FACTOR * molar_mass(species)) / kelvin


def round_value(value: float, digits: int = 2) -> float:
    """Round half up on the last kept digit (ties go toward +inf)."""
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale
