"""pocketcal.config_loader

Lightweight config loader for pocketcal.

- Reads YAML via PyYAML (JSON documents are valid YAML, so JSON files work too).
- Exposes a typed dataclass `Config` and a `load_config()` helper that accepts
  an optional path override; environment variables override file values.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = "~/.local/share/pocketcal/events.json"


@dataclass
class Config:
    """Typed configuration for pocketcal.

    Fields:
        store_path: JSON file holding the raw event definitions
        default_zone: zone used to bucket occurrences by date ("local" or IANA name)
        default_duration_minutes: duration assumed when a definition has no end
        rule_window_padding_days: whole days added on each side of the rule query window
        max_occurrences_per_rule: safety cap on occurrences produced by one rule
        expansion_cache_size: number of memoized (revision, window) expansions
        week_start: first day of the week for week/month views (0 = Monday)
        log_level: logging level name
    """

    store_path: str = DEFAULT_STORE_PATH
    default_zone: str = "local"
    default_duration_minutes: int = 60
    rule_window_padding_days: int = 1
    max_occurrences_per_rule: int = 5000
    expansion_cache_size: int = 32
    week_start: int = 0
    log_level: str = "INFO"

    @property
    def resolved_store_path(self) -> Path:
        """Store path with ``~`` expanded."""
        return Path(self.store_path).expanduser()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Config:
        """Create Config from a plain mapping, applying defaults and validation.

        Numeric-like values are coerced to int; out-of-range values are clamped
        with a warning rather than rejected.
        """
        if data is None:
            data = {}

        def _coerce_int(key: str, default: int) -> int:
            raw = data.get(key, default)
            try:
                return int(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not an int; using default %d", key, raw, default)
                return default

        duration = _coerce_int("default_duration_minutes", 60)
        if duration < 1:
            logger.warning("default_duration_minutes %d below minimum; coercing to 1", duration)
            duration = 1

        padding = _coerce_int("rule_window_padding_days", 1)
        if padding < 1:
            logger.warning("rule_window_padding_days %d below minimum; coercing to 1", padding)
            padding = 1

        max_occurrences = _coerce_int("max_occurrences_per_rule", 5000)
        if max_occurrences < 1:
            logger.warning("max_occurrences_per_rule %d below minimum; coercing to 1", max_occurrences)
            max_occurrences = 1

        cache_size = max(0, _coerce_int("expansion_cache_size", 32))

        week_start = _coerce_int("week_start", 0)
        if not 0 <= week_start <= 6:
            logger.warning("week_start %d outside 0..6; coercing to 0", week_start)
            week_start = 0

        store_path = data.get("store_path") or DEFAULT_STORE_PATH
        default_zone = data.get("default_zone") or "local"

        log_level = data.get("log_level", "INFO")
        log_level = str(log_level).upper() if log_level is not None else "INFO"

        return cls(
            store_path=str(store_path),
            default_zone=str(default_zone),
            default_duration_minutes=duration,
            rule_window_padding_days=padding,
            max_occurrences_per_rule=max_occurrences,
            expansion_cache_size=cache_size,
            week_start=week_start,
            log_level=log_level,
        )


def _load_yaml(path: Path) -> Any:
    """Load a YAML (or JSON) document; empty files load as an empty mapping."""
    import yaml  # noqa: PLC0415

    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ValueError(f"Config file {path} is not valid YAML: {e}") from e
    return {} if loaded is None else loaded


def _env_overrides() -> dict[str, Any]:
    """Collect POCKETCAL_* environment overrides."""
    overrides: dict[str, Any] = {}
    for env_key, cfg_key in (
        ("POCKETCAL_STORE_PATH", "store_path"),
        ("POCKETCAL_DEFAULT_ZONE", "default_zone"),
        ("POCKETCAL_LOG_LEVEL", "log_level"),
    ):
        value = os.environ.get(env_key)
        if value:
            overrides[cfg_key] = value
    return overrides


def load_config(path: str | None = None) -> Config:
    """Load configuration from a YAML/JSON file and return a Config instance.

    Args:
        path: Optional path to the config file. Defaults to
              ~/.config/pocketcal/config.yaml.

    Returns:
        Config dataclass instance with values from file, environment, or defaults.

    Raises:
        ValueError: If the file exists but its top level is not a mapping.
    """
    p = Path(path) if path else Path.home() / ".config" / "pocketcal" / "config.yaml"
    logger.debug("Attempting to load config from %s", p)

    raw: dict[str, Any] = {}
    if p.exists():
        loaded = _load_yaml(p)
        if not isinstance(loaded, dict):
            logger.warning("Config file %s parsed but top-level is not a mapping: %r", p, loaded)
            raise ValueError("Config file must contain a mapping at top level")  # noqa: TRY004
        raw = loaded
        logger.info("Loaded configuration from %s", p)
    else:
        logger.info("Config file %s not found; using defaults", p)

    raw.update(_env_overrides())
    cfg = Config.from_dict(raw)
    logger.debug("Configuration values: %s", cfg)
    return cfg
