from __future__ import annotations
import json
from datetime import datetime
from typing import Callable

from ..core.timeutil import format_result_time, now_local
from .models import Coordinate, MeasurementDocument

DEFAULT_SELFLINK_HOST = "storagemanager.linksmartcnet.se"


def self_link(serial: str, host: str = DEFAULT_SELFLINK_HOST) -> str:
    return f"http://{host}/Observations({serial})"


def build_document(
    mean_value: float,
    coord: Coordinate,
    phenomenon_time: str,
    serial: str,
    selflink_host: str = DEFAULT_SELFLINK_HOST,
    clock: Callable[[], datetime] = now_local,
) -> MeasurementDocument:
    # No validation here: the caller decides whether an unset coordinate is publishable
    return MeasurementDocument(
        sensor_serial=serial,
        self_link=self_link(serial, selflink_host),
        coordinates=(coord.latitude, coord.longitude),
        phenomenon_time=phenomenon_time,
        result_time=format_result_time(clock()),
        result_value=float(mean_value),
    )


def encode_document(doc: MeasurementDocument) -> bytes:
    return json.dumps(doc.to_payload(), allow_nan=False).encode("utf-8")
