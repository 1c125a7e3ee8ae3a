from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Optional, Literal


class LocationRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class CommandRequest(BaseModel):
    # printable ASCII only; it goes straight onto the serial link
    command: str = Field(min_length=1, max_length=256, pattern=r"^[\x20-\x7e]+$")


class SimManualRequest(BaseModel):
    ppb: float = Field(ge=0)
    species: Optional[str] = None
    temperature_c: Optional[int] = Field(default=None, ge=-60, le=80)


class SimPatternRequest(BaseModel):
    type: Literal["manual", "sine", "step", "random"]
    species: str = "O3"
    serial: str = "SIM-0001"
    baseline_ppb: float = 40
    amplitude_ppb: float = 15
    period_s: float = 600
    noise_ppb: float = 2
    temperature_c: int = 20
    step_low_ppb: float = 20
    step_high_ppb: float = 80
    step_period_s: float = 120
