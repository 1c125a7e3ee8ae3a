#!/usr/bin/env python3
"""
Headless bridge.

Reads gas readings from the sensor board over a serial / RFCOMM link,
averages them in batches and publishes each batch to the MQTT broker,
without the HTTP service.

Usage:
    aqbridge-run                                   # defaults from .env / environment
    aqbridge-run --port /dev/rfcomm0 --lat 65.58 --lon 22.15
    aqbridge-run --sim --broker localhost -v
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional

from .core.config import Settings, settings
from .domain.errors import SourceUnavailableError
from .domain.models import Coordinate
from .drivers.mqtt_paho import PahoTransport
from .services.wiring import build_pipeline, build_publisher, build_source, fixed_location
from .storage.sqlite_repo import SQLiteRepository

log = logging.getLogger("aqbridge.runner")


class ConsoleListener:
    """Logs what a display would show."""

    def on_reading_decoded(self, species: str, value: float) -> None:
        log.info("sensor=%s value=%.2f ug/m3", species, value)

    def on_batch_published(self, mean_value: float) -> None:
        log.info("→ PUBLISHED batch mean %.2f ug/m3", mean_value)


async def run(cfg: Settings, location: Optional[Coordinate], persist: bool) -> None:
    repo = None
    if persist:
        repo = SQLiteRepository(cfg.sqlite_path)
        await repo.init()

    source = build_source(cfg)
    publisher = build_publisher(cfg, PahoTransport())
    pipeline = build_pipeline(cfg, source, publisher, repo)
    pipeline.add_listener(ConsoleListener())

    log.info("Starting bridge")
    log.info("  Source:  %s (%s @ %d baud)", cfg.source_mode, cfg.serial_port, cfg.serial_baudrate)
    log.info("  Broker:  %s:%d topic=%s", cfg.broker_host, cfg.broker_port, cfg.publish_topic)
    log.info("  Batch:   %d values", cfg.batch_capacity)

    publisher.start()
    if location is not None:
        pipeline.on_location_update(location)
    else:
        log.warning("No location given; batches are not published until one is set")

    try:
        await pipeline.start()
    except SourceUnavailableError:
        publisher.stop()
        raise

    try:
        await asyncio.Event().wait()
    finally:
        await pipeline.stop()
        publisher.stop()


def main() -> None:
    p = argparse.ArgumentParser(description="Sensor stream to MQTT bridge")

    p.add_argument("--port", help="Serial port or pyserial URL (implies serial source)")
    p.add_argument("--baudrate", type=int)
    p.add_argument("--sim", action="store_true", help="Use the simulated sensor board")

    p.add_argument("--broker", help="Broker host")
    p.add_argument("--broker-port", type=int)
    p.add_argument("--topic", help="Publish topic")
    p.add_argument("--batch", type=int, help="Readings per published batch")

    p.add_argument("--lat", type=float, help="Fixed latitude of the sensor")
    p.add_argument("--lon", type=float, help="Fixed longitude of the sensor")

    p.add_argument("--persist", action="store_true", help="Store readings and batches in SQLite")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = p.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    update: dict = {}
    if args.sim:
        update["source_mode"] = "sim"
    elif args.port:
        update["source_mode"] = "serial"
        update["serial_port"] = args.port
    if args.baudrate:
        update["serial_baudrate"] = args.baudrate
    if args.broker:
        update["broker_host"] = args.broker
    if args.broker_port:
        update["broker_port"] = args.broker_port
    if args.topic:
        update["publish_topic"] = args.topic
    if args.batch:
        update["batch_capacity"] = args.batch
    if (args.lat is None) != (args.lon is None):
        p.error("--lat and --lon go together")
    if args.lat is not None:
        update["location_latitude"] = args.lat
        update["location_longitude"] = args.lon

    cfg = settings.model_copy(update=update)

    try:
        asyncio.run(run(cfg, fixed_location(cfg), args.persist))
    except KeyboardInterrupt:
        log.info("Shutting down")
    except SourceUnavailableError as e:
        log.error("%s", e)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
