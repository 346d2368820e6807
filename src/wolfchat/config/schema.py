"""Pydantic models for all configuration."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class TimingConfig(BaseModel):
    """Phase durations in seconds."""

    prepare_timeout: float = 300.0
    role_check: float = 30.0
    night: float = 120.0
    day: float = 120.0
    vote: float = 30.0

    def scaled(self, divisor: float) -> TimingConfig:
        """Return a copy with every duration divided by *divisor*."""
        if divisor <= 0:
            raise ValueError("divisor must be positive")
        return TimingConfig(
            **{name: value / divisor for name, value in self.model_dump().items()}
        )


class SessionConfig(BaseModel):
    """Group session cache configuration."""

    expiry_seconds: float = 300.0


class RoleSlot(BaseModel):
    """A role and its count in the game setup."""

    role: str
    count: int = 1


class GameConfig(BaseModel):
    """Top-level game configuration."""

    game_name: str = "classic_4p"
    num_players: int = 4
    roles: list[RoleSlot] = Field(
        default_factory=lambda: [
            RoleSlot(role="werewolf", count=1),
            RoleSlot(role="villager", count=2),
            RoleSlot(role="seer", count=1),
        ]
    )
    max_days: int = 10
    seed: int | None = None
    timings: TimingConfig = Field(default_factory=TimingConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)

    @model_validator(mode="after")
    def _deck_matches_players(self) -> GameConfig:
        deck_size = sum(slot.count for slot in self.roles)
        if deck_size != self.num_players:
            raise ValueError(
                f"Role deck has {deck_size} cards but num_players is "
                f"{self.num_players}"
            )
        return self
