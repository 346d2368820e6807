"""Reading game configuration from YAML and layering overrides on top.

Every loading problem (missing file, broken YAML, a deck that does not
fit the player count) is logged and the previous configuration is kept,
so a host can always start with at least the default four-player game.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from wolfchat.config.schema import GameConfig

logger = logging.getLogger(__name__)


def load_config(
    path: str | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> GameConfig:
    """Build a :class:`GameConfig` from *path*, then apply *overrides*.

    With no *path* (or an unusable file) the defaults are the base.
    """
    config = GameConfig()
    if path is None:
        logger.debug("No config file given, starting from the defaults")
    else:
        data = _read_mapping(path)
        if data is not None:
            loaded = _validated(data, path)
            if loaded is not None:
                config = loaded
    if overrides:
        config = merge_configs(config, overrides)
    return config


def merge_configs(base: GameConfig, overrides: Mapping[str, Any]) -> GameConfig:
    """Overlay *overrides* (nested per section) onto *base*.

    Returns *base* itself when the result would not validate.
    """
    merged = _validated(_overlay(base.model_dump(), overrides), "overrides")
    return base if merged is None else merged


def speed_up(config: GameConfig, speed: float, seed: int | None = None) -> GameConfig:
    """Divide every phase duration by *speed* and optionally pin the seed.

    Used by ``wolfchat simulate`` to play a whole game in seconds.
    """
    overrides: dict[str, Any] = {"timings": config.timings.scaled(speed).model_dump()}
    if seed is not None:
        overrides["seed"] = seed
    return merge_configs(config, overrides)


def dump_config(config: GameConfig) -> str:
    """Render *config* as YAML text, in field order."""
    return yaml.safe_dump(config.model_dump(), sort_keys=False)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------


def _read_mapping(path: str) -> dict[str, Any] | None:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning("Config file %s not found, using the default game", path)
        return None
    except yaml.YAMLError as exc:
        logger.error("Config file %s is not valid YAML: %s", path, exc)
        return None

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(
            "Config file %s holds a %s, expected a mapping",
            path,
            type(data).__name__,
        )
        return None
    return data


def _validated(data: Mapping[str, Any], source: str) -> GameConfig | None:
    try:
        return GameConfig.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'game'}: {err['msg']}"
            for err in exc.errors()
        )
        logger.error("Ignoring game config from %s (%s)", source, problems)
        return None


def _overlay(base: dict[str, Any], extra: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            merged[key] = _overlay(current, value)
        else:
            merged[key] = value
    return merged
