from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "Air Quality Bridge"
    timezone: str = "Europe/Stockholm"

    # Byte source: "sim" for development, "serial" for the sensor board
    source_mode: str = Field(default="sim")
    serial_port: str = "/dev/rfcomm0"     # Windows example: "COM3"
    serial_baudrate: int = 9600
    serial_timeout_s: float = 0.0         # 0 => non-blocking reads
    poll_interval_seconds: float = 0.05
    reconnect_backoff_s: float = 1.0
    max_reconnect_backoff_s: float = 10.0

    # Framing
    frame_delimiter: int = 33             # '!'
    frame_buffer_capacity: int = 1024

    # Aggregation
    batch_capacity: int = 10

    # Broker
    broker_host: str = "almanacscsh.cloudapp.net"
    broker_port: int = 1883
    broker_client_id: str = "AirPollutionPi"
    broker_keepalive_s: int = 60
    broker_clean_session: bool = False
    broker_username: Optional[str] = None
    broker_password: Optional[str] = None
    publish_topic: str = "test"
    subscribe_topic: str = "test"
    broker_qos: int = 0
    offline_buffer_size: int = 100
    broker_reconnect_min_delay_s: int = 1
    broker_reconnect_max_delay_s: int = 120

    # Outbound document
    selflink_host: str = "storagemanager.linksmartcnet.se"

    # Fixed location for stationary deployments (unset => wait for updates)
    location_latitude: Optional[float] = None
    location_longitude: Optional[float] = None

    # Storage
    sqlite_path: str = Field(default="aqbridge.db")

    # Logging
    log_level: str = "INFO"
    log_path: str = "aqbridge.log"
    log_max_bytes: int = 2_000_000
    log_backup_count: int = 5

    # Control
    autostart: bool = True
    shutdown_command: str = "shutdown"


settings = Settings()
