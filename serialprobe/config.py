"""Configuration loading for discovery and probing."""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, List

from . import settings
from .settings import CONFIG_FILE

logger = logging.getLogger(__name__)


def _ensure_parent(path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        # Directory creation failures will surface during write.
        pass


def _coerce_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _coerce_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _coerce_str_list(value: Any, default: List[str]) -> List[str]:
    if isinstance(value, str):
        return [value] if value else list(default)
    if not isinstance(value, (list, tuple)):
        return list(default)
    items = [str(item) for item in value if str(item)]
    return items or list(default)


@dataclass
class ProbeConfig:
    selectors: List[str] = field(default_factory=lambda: [settings.ALL_SERIAL_DEVICES])
    baudrate: int = settings.DEFAULT_BAUDRATE
    poll_interval: float = settings.POLL_INTERVAL
    dispose_grace_seconds: float = settings.DISPOSE_GRACE_SECONDS
    probe_timeout: float = settings.PROBE_TIMEOUT
    known_device_names: List[str] = field(
        default_factory=lambda: list(settings.KNOWN_DEVICE_NAMES)
    )
    product_tags: List[str] = field(default_factory=lambda: list(settings.PRODUCT_TAGS))


def load_config(path: str | Path = CONFIG_FILE) -> ProbeConfig:
    """Load configuration data from *path* or return defaults on failure."""

    defaults = ProbeConfig()
    cfg_path = Path(path)
    if not cfg_path.exists():
        return defaults

    try:
        raw = json.loads(cfg_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        logger.error("Config file %s contains invalid JSON: %s", cfg_path, exc)
        return defaults
    except OSError as exc:
        logger.error("Could not read config file %s: %s", cfg_path, exc)
        return defaults

    if not isinstance(raw, dict):
        logger.error("Config file %s did not contain an object", cfg_path)
        return defaults

    data = asdict(defaults)
    data["selectors"] = _coerce_str_list(raw.get("selectors"), defaults.selectors)
    data["baudrate"] = max(1, _coerce_int(raw.get("baudrate"), defaults.baudrate))
    data["poll_interval"] = max(
        0.05, _coerce_float(raw.get("poll_interval"), defaults.poll_interval)
    )
    data["dispose_grace_seconds"] = max(
        0.0,
        _coerce_float(raw.get("dispose_grace_seconds"), defaults.dispose_grace_seconds),
    )
    data["probe_timeout"] = max(
        0.0, _coerce_float(raw.get("probe_timeout"), defaults.probe_timeout)
    )
    data["known_device_names"] = _coerce_str_list(
        raw.get("known_device_names"), defaults.known_device_names
    )
    data["product_tags"] = _coerce_str_list(raw.get("product_tags"), defaults.product_tags)

    return ProbeConfig(**data)


def save_config(config: ProbeConfig, path: str | Path = CONFIG_FILE) -> None:
    """Persist *config* to *path*, logging errors without raising."""

    cfg_path = Path(path)
    _ensure_parent(cfg_path)
    try:
        cfg_path.write_text(json.dumps(asdict(config), indent=4), encoding="utf-8")
    except OSError as exc:
        logger.error("Could not write config file %s: %s", cfg_path, exc)
