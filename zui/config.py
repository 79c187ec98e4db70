# zui/config.py
"""
Dashboard configuration.

All keys are optional; an absent file means defaults. Example:

  redis_url: redis://0.0.0.0:6379
  call_timeout_secs: 5
  exit_device_refresh_secs: 60
  modules:
    identity: identityd
    registrar: registrar
    provision: provision
    node: node
    network: network
  retry:
    initial_secs: 0.5
    max_secs: 10
  logging:
    file: zui.log
    level: INFO
"""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Optional

import yaml

DEFAULT_REDIS_URL = "redis://0.0.0.0:6379"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# -------------------------
# Config models (lightweight)
# -------------------------

@dataclass
class ModulesConfig:
    identity: str = "identityd"
    registrar: str = "registrar"
    provision: str = "provision"
    node: str = "node"
    network: str = "network"


@dataclass
class RetryConfig:
    initial_secs: float = 0.5
    max_secs: float = 10.0

    def delay(self, failures: int) -> float:
        if failures <= 0:
            return 0.0
        return min(self.max_secs, self.initial_secs * (1.5 ** (failures - 1)))


@dataclass
class LoggingConfig:
    file: str = "zui.log"
    level: str = "INFO"


@dataclass
class Config:
    redis_url: str = DEFAULT_REDIS_URL
    call_timeout_secs: float = 5.0
    exit_device_refresh_secs: float = 60.0
    modules: ModulesConfig = dataclasses.field(default_factory=ModulesConfig)
    retry: RetryConfig = dataclasses.field(default_factory=RetryConfig)
    logging: LoggingConfig = dataclasses.field(default_factory=LoggingConfig)


def _positive(raw: dict, key: str, default: float) -> float:
    try:
        val = float(raw.get(key, default))
    except (TypeError, ValueError):
        raise ValueError(f"Config key {key} must be a number, got {raw.get(key)!r}")
    if val <= 0:
        raise ValueError(f"Config key {key} must be positive, got {val}")
    return val


def _section(raw: dict, key: str) -> dict:
    val = raw.get(key) or {}
    if not isinstance(val, dict):
        raise ValueError(f"Config section {key} must be a mapping")
    return val


def parse_config(raw: Optional[dict]) -> Config:
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    mods_raw = _section(raw, "modules")
    defaults = ModulesConfig()
    modules = ModulesConfig(**{
        f.name: str(mods_raw.get(f.name, getattr(defaults, f.name)))
        for f in dataclasses.fields(ModulesConfig)
    })
    unknown = set(mods_raw) - {f.name for f in dataclasses.fields(ModulesConfig)}
    if unknown:
        raise ValueError(f"Unknown module keys: {', '.join(sorted(unknown))}")

    retry_raw = _section(raw, "retry")
    retry = RetryConfig(
        initial_secs=_positive(retry_raw, "initial_secs", 0.5),
        max_secs=_positive(retry_raw, "max_secs", 10.0),
    )
    if retry.max_secs < retry.initial_secs:
        raise ValueError("retry.max_secs must be >= retry.initial_secs")

    log_raw = _section(raw, "logging")
    level = str(log_raw.get("level", "INFO")).upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"Invalid log level '{level}'")

    return Config(
        redis_url=str(raw.get("redis_url", DEFAULT_REDIS_URL)),
        call_timeout_secs=_positive(raw, "call_timeout_secs", 5.0),
        exit_device_refresh_secs=_positive(raw, "exit_device_refresh_secs", 60.0),
        modules=modules,
        retry=retry,
        logging=LoggingConfig(file=str(log_raw.get("file", "zui.log")), level=level),
    )


def load_config(path: Optional[str]) -> Config:
    if not path:
        return Config()
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return parse_config(raw)


def setup_logging(cfg: LoggingConfig) -> None:
    # The terminal belongs to the dashboard, so records only go to the file.
    root = logging.getLogger()
    root.setLevel(cfg.level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    handler = logging.FileHandler(cfg.file, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
