"""
Structured error types for flowviz.

The visualizer is a diagnostic tool: builders, the time-travel controller,
the heatmap aggregator, and renderers all degrade gracefully and never raise
for malformed input. Errors in this module are raised only at API
boundaries where the caller asked for something impossible, such as a
strict event decode of an unknown tag, an unknown render format, or an
invalid heat threshold configuration.

Every error carries:
- **Category:** What kind of error (event, render, config, playback)
- **Retryable:** Always False here, kept for parity with callers that route errors
- **Context:** Structured metadata (workflow id, node id, event type, renderer)
- **Cause:** Chained underlying exception for root cause analysis

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────┐
        │                       FlowvizError                        │
        │           (category, retryable, context, cause)           │
        ├──────────────────────────────────────────────────────────┤
        │                                                           │
        │  EventError          RenderError         ConfigError      │
        │  (EVENT)             (RENDER)            (CONFIG)         │
        │      │                   │                   │            │
        │  UnknownEventError   UnknownFormatError  InvalidConfigError│
        │                                                           │
        │  PlaybackError                                            │
        │  (PLAYBACK)                                               │
        └──────────────────────────────────────────────────────────┘

Examples:
    >>> error = UnknownEventError("step_teleport")
    >>> error.category
    <ErrorCategory.EVENT: 'EVENT'>
    >>> error.to_dict()["event_type"]
    'step_teleport'

    Adding context fluently:

    >>> err = RenderError("layout failed").with_context(renderer="html")
    >>> err.context.renderer
    'html'
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    EVENT = "EVENT"              # Event decoding, unknown tags
    RENDER = "RENDER"            # Renderer dispatch, output formats
    CONFIG = "CONFIG"            # Settings, thresholds, options
    PLAYBACK = "PLAYBACK"        # Time-travel timer failures

    INTERNAL = "INTERNAL"        # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"          # Uncategorized errors


@dataclass
class ErrorContext:
    """Structured metadata context for errors.

    Only non-None fields are serialized by ``to_dict()``; anything else goes
    into ``metadata``.

    Attributes:
        workflow_id: Workflow the error relates to
        node_id: IR node identifier
        event_type: Wire tag of the offending event
        renderer: Renderer or output format name
        metadata: Additional key-value pairs
    """

    workflow_id: str | None = None
    node_id: str | None = None
    event_type: str | None = None
    renderer: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["workflow_id", "node_id", "event_type", "renderer"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class FlowvizError(Exception):
    """Base exception for all flowviz errors.

    Subclasses set ``default_category`` to classify themselves; the
    ``category`` keyword overrides it per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> FlowvizError:
        """Add context to this error (fluent API).

        Usage:
            raise RenderError("bad layout").with_context(renderer="html")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result.update(context_dict)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# EVENT ERRORS
# =============================================================================


class EventError(FlowvizError):
    """An event could not be decoded."""

    default_category = ErrorCategory.EVENT


class UnknownEventError(EventError):
    """Event carries a type tag this package does not know."""

    def __init__(self, event_type: Any, message: str | None = None):
        self.event_type = event_type
        super().__init__(
            message or f"Unknown event type: {event_type!r}",
            context=ErrorContext(event_type=str(event_type)),
        )


# =============================================================================
# RENDER ERRORS
# =============================================================================


class RenderError(FlowvizError):
    """Renderer dispatch failed."""

    default_category = ErrorCategory.RENDER


class UnknownFormatError(RenderError):
    """Requested output format has no renderer."""

    def __init__(self, fmt: str, available: list[str] | None = None):
        self.format = fmt
        self.available = list(available or [])
        message = f"Unknown render format: {fmt!r}"
        if self.available:
            message += f" (available: {', '.join(self.available)})"
        super().__init__(message, context=ErrorContext(renderer=fmt))


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(FlowvizError):
    """Configuration error. Never retryable."""

    default_category = ErrorCategory.CONFIG


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


class PlaybackError(FlowvizError):
    """Playback timer could not be driven."""

    default_category = ErrorCategory.PLAYBACK


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, FlowvizError):
        return error.category
    if isinstance(error, (KeyError, TypeError, ValueError)):
        return ErrorCategory.EVENT
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "FlowvizError",
    "EventError",
    "UnknownEventError",
    "RenderError",
    "UnknownFormatError",
    "ConfigError",
    "InvalidConfigError",
    "PlaybackError",
    "categorize_error",
]
