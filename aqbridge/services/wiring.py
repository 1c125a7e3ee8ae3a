"""Builds the bridge components from Settings. Importing this module has no side effects."""

from __future__ import annotations

from typing import Optional

from ..core.config import Settings
from ..domain.interfaces import BrokerTransport, ByteSource, ConnectOptions, Repository
from ..domain.models import Coordinate
from ..drivers.serial_source import SerialByteSource, SerialConfig
from ..drivers.sim_source import SimulatedByteSource
from .pipeline import PipelineConfig, StreamPipeline
from .publisher import Publisher, PublisherConfig


def build_source(cfg: Settings) -> ByteSource:
    if cfg.source_mode.lower() == "serial":
        return SerialByteSource(
            SerialConfig(
                port=cfg.serial_port,
                baudrate=cfg.serial_baudrate,
                timeout_s=cfg.serial_timeout_s,
                reconnect_backoff_s=cfg.reconnect_backoff_s,
                max_reconnect_backoff_s=cfg.max_reconnect_backoff_s,
            )
        )

    # default to sim
    return SimulatedByteSource(delimiter=cfg.frame_delimiter)


def build_publisher(cfg: Settings, transport: BrokerTransport) -> Publisher:
    options = ConnectOptions(
        host=cfg.broker_host,
        port=cfg.broker_port,
        client_id=cfg.broker_client_id,
        keepalive_s=cfg.broker_keepalive_s,
        clean_session=cfg.broker_clean_session,
        username=cfg.broker_username,
        password=cfg.broker_password,
        reconnect_min_delay_s=cfg.broker_reconnect_min_delay_s,
        reconnect_max_delay_s=cfg.broker_reconnect_max_delay_s,
    )
    return Publisher(
        transport,
        PublisherConfig(
            options=options,
            subscribe_topic=cfg.subscribe_topic,
            qos=cfg.broker_qos,
            offline_buffer_size=cfg.offline_buffer_size,
        ),
    )


def build_pipeline(
    cfg: Settings,
    source: ByteSource,
    publisher: Publisher,
    repo: Optional[Repository] = None,
) -> StreamPipeline:
    return StreamPipeline(
        source,
        publisher,
        PipelineConfig(
            delimiter=cfg.frame_delimiter,
            frame_buffer_capacity=cfg.frame_buffer_capacity,
            batch_capacity=cfg.batch_capacity,
            publish_topic=cfg.publish_topic,
            selflink_host=cfg.selflink_host,
            poll_interval_s=cfg.poll_interval_seconds,
        ),
        repo=repo,
    )


def fixed_location(cfg: Settings) -> Optional[Coordinate]:
    if cfg.location_latitude is None or cfg.location_longitude is None:
        return None
    return Coordinate(latitude=cfg.location_latitude, longitude=cfg.location_longitude)
