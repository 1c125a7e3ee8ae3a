from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class Coordinate:
    latitude: float = 0.0
    longitude: float = 0.0

    @property
    def is_set(self) -> bool:
        # (0, 0) doubles as "no fix yet"
        return self.latitude != 0.0 and self.longitude != 0.0


@dataclass(frozen=True)
class Reading:
    species: str
    value_micrograms: float
    sensor_serial: str
    phenomenon_time: str
    ppb: int = 0
    temperature_c: int = 0
    ts_utc: Optional[datetime] = None


@dataclass(frozen=True)
class MeasurementDocument:
    sensor_serial: str
    self_link: str
    coordinates: tuple[float, float]
    phenomenon_time: str
    result_time: str
    result_value: float
    description: str = "description"
    feature_type: str = "point"

    @property
    def datastream_id(self) -> str:
        return self.sensor_serial

    def to_payload(self) -> dict[str, Any]:
        return {
            "@iot.id": self.sensor_serial,
            "@iot.selflink": self.self_link,
            "FeatureOfInterest": {
                "iot.id": self.sensor_serial,
                "description": self.description,
                "feature": {
                    "type": self.feature_type,
                    "coordinates": [self.coordinates[0], self.coordinates[1]],
                },
                "DataStream": {"@iot.id": self.datastream_id},
                "phenomenonTime": self.phenomenon_time,
                "resultTime": self.result_time,
                "result": {"Value": self.result_value},
            },
        }


@dataclass(frozen=True)
class BatchRecord:
    ts_utc: datetime
    sensor_serial: str
    species: str
    mean_value: float
    sample_count: int
    latitude: float
    longitude: float
    published: bool
    topic: Optional[str] = None


@dataclass
class PipelineStats:
    frames: int = 0
    malformed: int = 0
    conversion_errors: int = 0
    io_errors: int = 0
    batches_published: int = 0
    batches_skipped_no_location: int = 0
    publish_failures: int = 0
    deliveries: int = 0

    def as_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


@dataclass
class LiveState:
    mode: str = "sim"
    last_species: Optional[str] = None
    last_value: Optional[float] = None
    last_reading_utc: Optional[datetime] = None
    last_mean: Optional[float] = None
    last_mean_utc: Optional[datetime] = None
    recent_values: list[float] = field(default_factory=list)
