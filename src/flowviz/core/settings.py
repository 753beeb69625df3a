"""Environment-driven settings for flowviz.

Operators tune rendering defaults and heat sensitivity per deployment
without code changes. Every field reads from ``FLOWVIZ_*`` environment
variables or a ``.env`` file; explicit constructor and ``RenderOptions``
arguments always win over these values.

Examples:
    >>> import os
    >>> os.environ["FLOWVIZ_HEAT_HOT"] = "0.7"
    >>> clear_settings_cache()
    >>> get_settings().heat_hot
    0.7
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from flowviz.performance import HeatThresholds

Direction = Literal["TB", "BT", "LR", "RL"]
Theme = Literal["auto", "light", "dark"]


class VisualizerSettings(BaseSettings):
    """Deployment defaults for builders, renderers, and playback.

    Fields
    ──────
    log_level            : Structlog log level
    log_json             : Force JSON logs (None = auto-detect tty)
    default_direction    : Layout direction when options omit one
    default_theme        : HTML theme when options omit one
    show_timings         : Annotate nodes with durations
    show_keys            : Append cache keys to labels
    playback_speed       : Time-travel playback multiplier
    playback_interval_ms : Base tick between snapshots at speed 1.0
    heat_*               : Lower bounds of each heat level (normalized 0..1)
    terminal_width       : Width of the text renderer header
    """

    model_config = SettingsConfigDict(
        env_prefix="FLOWVIZ_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_json: bool | None = Field(default=None)

    # ── Rendering ────────────────────────────────────────────────
    default_direction: Direction = Field(default="TB")
    default_theme: Theme = Field(default="auto")
    show_timings: bool = Field(default=True)
    show_keys: bool = Field(default=False)
    terminal_width: int = Field(default=60, ge=20)

    # ── Playback ─────────────────────────────────────────────────
    playback_speed: float = Field(default=1.0, gt=0)
    playback_interval_ms: int = Field(default=100, gt=0)

    # ── Heat thresholds ──────────────────────────────────────────
    heat_cool: float = Field(default=0.2, ge=0, le=1)
    heat_neutral: float = Field(default=0.4, ge=0, le=1)
    heat_warm: float = Field(default=0.6, ge=0, le=1)
    heat_hot: float = Field(default=0.8, ge=0, le=1)
    heat_critical: float = Field(default=0.95, ge=0, le=1)

    @model_validator(mode="after")
    def _validate_heat_order(self) -> VisualizerSettings:
        """Heat bounds must be strictly increasing."""
        bounds = [self.heat_cool, self.heat_neutral, self.heat_warm, self.heat_hot, self.heat_critical]
        if any(b <= a for a, b in zip(bounds, bounds[1:])):
            raise ValueError(f"heat thresholds must be strictly increasing: {bounds}")
        return self

    def heat_thresholds(self) -> HeatThresholds:
        """Return the configured bounds as a ``HeatThresholds``."""
        from flowviz.performance import HeatThresholds

        return HeatThresholds(
            cool=self.heat_cool,
            neutral=self.heat_neutral,
            warm=self.heat_warm,
            hot=self.heat_hot,
            critical=self.heat_critical,
        )


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, VisualizerSettings] = {}


def get_settings(*, _force_reload: bool = False) -> VisualizerSettings:
    """Return the process-wide settings, loading them once."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = VisualizerSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = ["VisualizerSettings", "get_settings", "clear_settings_cache"]
