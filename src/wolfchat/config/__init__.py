"""Configuration loading and validation."""

from wolfchat.config.schema import (
    GameConfig,
    RoleSlot,
    SessionConfig,
    TimingConfig,
)
from wolfchat.config.loader import dump_config, load_config, merge_configs, speed_up

__all__ = [
    "GameConfig",
    "RoleSlot",
    "SessionConfig",
    "TimingConfig",
    "dump_config",
    "load_config",
    "merge_configs",
    "speed_up",
]
