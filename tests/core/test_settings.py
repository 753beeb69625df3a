"""Tests for flowviz.core.settings.

Covers:
- Defaults
- FLOWVIZ_* environment overrides
- Field validation (ranges, literals, heat ordering)
- Cached factory and cache clearing
- RenderOptions seeded from settings
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from flowviz.core.settings import VisualizerSettings, clear_settings_cache, get_settings
from flowviz.performance import HeatLevel
from flowviz.render import RenderOptions


class TestDefaults:
    def test_rendering_defaults(self):
        s = VisualizerSettings()
        assert s.default_direction == "TB"
        assert s.default_theme == "auto"
        assert s.show_timings is True
        assert s.show_keys is False
        assert s.terminal_width == 60

    def test_playback_defaults(self):
        s = VisualizerSettings()
        assert s.playback_speed == 1.0
        assert s.playback_interval_ms == 100

    def test_heat_defaults(self):
        t = VisualizerSettings().heat_thresholds()
        assert (t.cool, t.neutral, t.warm, t.hot, t.critical) == (0.2, 0.4, 0.6, 0.8, 0.95)

    def test_logging_defaults(self):
        s = VisualizerSettings()
        assert s.log_level == "INFO"
        assert s.log_json is None


class TestEnvOverride:
    def test_direction_from_env(self, monkeypatch):
        monkeypatch.setenv("FLOWVIZ_DEFAULT_DIRECTION", "LR")
        assert VisualizerSettings().default_direction == "LR"

    def test_booleans_from_env(self, monkeypatch):
        monkeypatch.setenv("FLOWVIZ_SHOW_TIMINGS", "false")
        monkeypatch.setenv("FLOWVIZ_LOG_JSON", "true")
        s = VisualizerSettings()
        assert s.show_timings is False
        assert s.log_json is True

    def test_heat_from_env(self, monkeypatch):
        monkeypatch.setenv("FLOWVIZ_HEAT_CRITICAL", "0.99")
        assert VisualizerSettings().heat_thresholds().classify(0.97) == HeatLevel.HOT

    def test_unprefixed_ignored(self, monkeypatch):
        monkeypatch.setenv("TERMINAL_WIDTH", "100")
        assert VisualizerSettings().terminal_width == 60


class TestValidation:
    def test_terminal_width_minimum(self):
        with pytest.raises(ValidationError):
            VisualizerSettings(terminal_width=10)

    def test_playback_speed_positive(self):
        with pytest.raises(ValidationError):
            VisualizerSettings(playback_speed=0)

    def test_unknown_direction(self):
        with pytest.raises(ValidationError):
            VisualizerSettings(default_direction="UP")

    def test_heat_out_of_range(self):
        with pytest.raises(ValidationError):
            VisualizerSettings(heat_critical=1.5)

    def test_heat_must_increase(self):
        with pytest.raises(ValidationError, match="strictly increasing"):
            VisualizerSettings(heat_warm=0.9)


class TestFactory:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_force_reload(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("FLOWVIZ_TERMINAL_WIDTH", "80")
        assert get_settings().terminal_width == 60
        reloaded = get_settings(_force_reload=True)
        assert reloaded is not first
        assert reloaded.terminal_width == 80

    def test_clear_cache(self, monkeypatch):
        get_settings()
        monkeypatch.setenv("FLOWVIZ_SHOW_KEYS", "1")
        clear_settings_cache()
        assert get_settings().show_keys is True


class TestRenderOptionsFromSettings:
    def test_seeded(self):
        s = VisualizerSettings(default_direction="RL", default_theme="dark", terminal_width=30, heat_hot=0.7)
        options = RenderOptions.from_settings(s)
        assert options.direction == "RL"
        assert options.theme == "dark"
        assert options.terminal_width == 30
        assert options.thresholds.hot == 0.7

    def test_overrides_win(self):
        options = RenderOptions.from_settings(VisualizerSettings(), direction="LR", show_keys=True)
        assert options.direction == "LR"
        assert options.show_keys is True

    def test_td_alias(self):
        assert RenderOptions(direction="TD").layout_direction == "TB"  # type: ignore[arg-type]
        assert RenderOptions(direction="XX").layout_direction == "TB"  # type: ignore[arg-type]
