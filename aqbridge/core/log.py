import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

from .config import Settings, settings

_HANDLER_TAG = "_aqbridge_handler"


def configure_logging(cfg: Optional[Settings] = None) -> None:
    """Console + rotating file on the root logger. Safe to call more than once."""
    cfg = cfg or settings
    root = logging.getLogger()
    root.setLevel(getattr(logging, cfg.log_level.upper(), logging.INFO))

    # The service and the runner may both configure in one process
    for handler in [h for h in root.handlers if getattr(h, _HANDLER_TAG, False)]:
        root.removeHandler(handler)
        handler.close()

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

    console = logging.StreamHandler()
    # Rotating file (the gateway runs off an SD card)
    rotating = RotatingFileHandler(cfg.log_path, maxBytes=cfg.log_max_bytes, backupCount=cfg.log_backup_count)
    for handler in (console, rotating):
        handler.setFormatter(fmt)
        setattr(handler, _HANDLER_TAG, True)
        root.addHandler(handler)

    # paho logs every PUBLISH/PUBACK at DEBUG
    for name in ("httpx", "paho", "aiosqlite"):
        logging.getLogger(name).setLevel(logging.WARNING)
