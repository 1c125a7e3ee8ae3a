from __future__ import annotations
import re
from datetime import datetime
from typing import Optional

from .conversion import ppb_to_micrograms, round_value
from .errors import MalformedRecordError
from .models import Reading

FIELD_SEPARATOR = ","
MIN_FIELDS = 5

# species, ppb, temperature, phenomenon time, sensor serial
SPECIES, PPB, TEMPERATURE, PHENOMENON_TIME, SERIAL = range(MIN_FIELDS)

_INT_RE = re.compile(r"[+-]?[0-9]+")


def decode_frame(frame: bytes) -> str:
    try:
        return frame.decode("ascii")
    except UnicodeDecodeError as e:
        raise MalformedRecordError(f"frame is not ASCII: {e}") from e


def parse_record(text: str) -> list[str]:
    return text.split(FIELD_SEPARATOR)


def _parse_int(fields: list[str], index: int) -> int:
    raw = fields[index]
    if not _INT_RE.fullmatch(raw):
        raise MalformedRecordError(f"field {index} is not an integer: {raw!r}")
    return int(raw)


def reading_from_record(fields: list[str], ts_utc: Optional[datetime] = None) -> Reading:
    """Validate a parsed record and turn it into a converted, rounded Reading.

    Raises MalformedRecordError for short records or bad integers and
    ConversionDomainError when the temperature makes the conversion undefined.
    """
    if len(fields) < MIN_FIELDS:
        raise MalformedRecordError(f"expected at least {MIN_FIELDS} fields, got {len(fields)}")

    species = fields[SPECIES]
    ppb = _parse_int(fields, PPB)
    temperature_c = _parse_int(fields, TEMPERATURE)
    value = round_value(ppb_to_micrograms(species, ppb, temperature_c))

    return Reading(
        species=species,
        value_micrograms=value,
        sensor_serial=fields[SERIAL],
        phenomenon_time=fields[PHENOMENON_TIME],
        ppb=ppb,
        temperature_c=temperature_c,
        ts_utc=ts_utc,
    )


def format_record(species: str, ppb: int, temperature_c: int, phenomenon_time: str, serial: str) -> str:
    return FIELD_SEPARATOR.join([species, str(ppb), str(temperature_c), phenomenon_time, serial])
