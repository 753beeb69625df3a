"""Ambient infrastructure: errors, structured logging, settings, timing."""

from flowviz.core.errors import (
    ConfigError,
    ErrorCategory,
    ErrorContext,
    EventError,
    FlowvizError,
    InvalidConfigError,
    PlaybackError,
    RenderError,
    UnknownEventError,
    UnknownFormatError,
    categorize_error,
)
from flowviz.core.logging import LogContext, bind_context, configure_logging, get_logger
from flowviz.core.settings import VisualizerSettings, clear_settings_cache, get_settings
from flowviz.core.timing import format_duration, now_ms

__all__ = [
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "EventError",
    "FlowvizError",
    "InvalidConfigError",
    "PlaybackError",
    "RenderError",
    "UnknownEventError",
    "UnknownFormatError",
    "categorize_error",
    "LogContext",
    "bind_context",
    "configure_logging",
    "get_logger",
    "VisualizerSettings",
    "clear_settings_cache",
    "get_settings",
    "format_duration",
    "now_ms",
]
