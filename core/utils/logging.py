"""
Logging utilities for Watermark Worker
"""

import logging
import sys
from pathlib import Path

from core.config import get_config


def setup_logging():
    cfg = get_config().logging
    log_level = getattr(logging, str(cfg.level).upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    if cfg.file:
        Path(cfg.file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(cfg.file, encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format=cfg.format,
        handlers=handlers,
        force=True,
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
