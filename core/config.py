"""
Configuration for Watermark Worker (YAML file + environment overrides)
"""

import os
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from core.errors import ConfigError

DEFAULT_CONFIG_PATH = Path("config/config.yaml")

ENV_OVERRIDES = {
    "WATERMARK_STORAGE_BACKEND": ("storage", "backend"),
    "WATERMARK_STORAGE_ROOT": ("storage", "root"),
    "WATERMARK_STORAGE_URL": ("storage", "base_url"),
    "WATERMARK_SIGNING_KEY": ("storage", "signing_key"),
    "WATERMARK_LOG_LEVEL": ("logging", "level"),
}


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


@dataclass
class PathsConfig:
    scratch_dir: Optional[Path] = None


@dataclass
class StorageConfig:
    backend: str = "local"
    root: Path = Path("data/blobs")
    base_url: Optional[str] = None
    signing_key: Optional[str] = None
    read_url_ttl: int = 3600
    timeout: float = 600.0


@dataclass
class TranscoderConfig:
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    preset: str = "fast"
    crf: int = 23
    chunk_size: int = 4 * 1024 * 1024
    kill_grace: float = 5.0


@dataclass
class OverlayConfig:
    font_path: Optional[str] = None


@dataclass
class CallbackConfig:
    timeout: float = 30.0


@dataclass
class Config:
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    transcoder: TranscoderConfig = field(default_factory=TranscoderConfig)
    overlay: OverlayConfig = field(default_factory=OverlayConfig)
    callback: CallbackConfig = field(default_factory=CallbackConfig)


_config: Optional[Config] = None


def _coerce(section: str, name: str, default: Any, value: Any) -> Any:
    if value is None:
        return None
    try:
        if isinstance(default, bool):
            return bool(value)
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
        if isinstance(default, Path) or name in ("scratch_dir", "root"):
            return Path(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {section}.{name}: {value!r}") from e
    return value


def _build_section(section: str, cls, data: Dict[str, Any]):
    if not isinstance(data, dict):
        raise ConfigError(f"Config section '{section}' must be a mapping")
    obj = cls()
    known = {f.name for f in fields(cls)}
    for key, value in data.items():
        if key not in known:
            raise ConfigError(f"Unknown config key: {section}.{key}")
        setattr(obj, key, _coerce(section, key, getattr(obj, key), value))
    return obj


def load_config(path: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> Config:
    """Load configuration from YAML, then apply environment overrides.

    The path defaults to ``$WATERMARK_CONFIG`` or ``config/config.yaml``; a
    missing default file just yields the built-in defaults.
    """
    env = os.environ if env is None else env
    explicit = path or env.get("WATERMARK_CONFIG")
    cfg_path = Path(explicit) if explicit else DEFAULT_CONFIG_PATH

    raw: Dict[str, Any] = {}
    if cfg_path.exists():
        try:
            raw = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse {cfg_path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"{cfg_path} must contain a mapping at the top level")
    elif explicit:
        raise ConfigError(f"Config file not found: {cfg_path}")

    for var, (section, key) in ENV_OVERRIDES.items():
        if env.get(var):
            raw.setdefault(section, {})
            if raw[section] is None:
                raw[section] = {}
            raw[section][key] = env[var]

    cfg = Config()
    for f in fields(Config):
        section_cls = type(getattr(cfg, f.name))
        if f.name in raw and is_dataclass(section_cls):
            setattr(cfg, f.name, _build_section(f.name, section_cls, raw[f.name] or {}))
    unknown = set(raw) - {f.name for f in fields(Config)}
    if unknown:
        raise ConfigError(f"Unknown config sections: {', '.join(sorted(unknown))}")
    return cfg


def get_config() -> Config:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(cfg: Optional[Config]) -> None:
    """Replace (or with ``None``, reset) the process-wide config."""
    global _config
    _config = cfg
