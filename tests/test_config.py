"""
Unit Tests for Configuration

Tests YAML loading, environment overrides and settings validation.
"""

import pytest
from pydantic import ValidationError

from config import get_config, get_settings, reload_config
from config.config_loader import coerce_like, get_value, resolve_env_key
from config.models import EngineSettings


@pytest.fixture
def fresh_config():
    """Reload configuration before and after the test so env overrides never leak."""
    reload_config()
    yield
    reload_config()
    get_settings(reload=True)


class TestConfigLoader:

    def test_get_when_dot_key_then_yaml_value(self, fresh_config):
        config = get_config()
        assert config.get("outline.threshold") == pytest.approx(0.22)
        assert config.get("scoring.debounce_ms") == 100
        assert config.get("outline.missing", "fallback") == "fallback"
        assert get_value("alignment.max_landmark_pairs") == 200

    def test_env_override_when_underscored_key_then_type_kept(self, fresh_config, monkeypatch):
        monkeypatch.setenv("SKETCHMATCH_OUTLINE_MIN_COMPONENT_PIXELS", "60")
        monkeypatch.setenv("SKETCHMATCH_OUTLINE_CLOSE_GAPS", "true")
        monkeypatch.setenv("SKETCHMATCH_SCORING_ALIGNMENT_THRESHOLD", "0.8")
        reload_config()
        config = get_config()
        assert config.get("outline.min_component_pixels") == 60
        assert config.get("outline.close_gaps") is True
        assert config.get("scoring.alignment_threshold") == pytest.approx(0.8)

    def test_env_override_when_unknown_key_then_ignored(self, fresh_config, monkeypatch):
        monkeypatch.setenv("SKETCHMATCH_OUTLINE_NOT_A_KEY", "1")
        reload_config()
        assert get_config().get("outline.not_a_key") is None

    def test_get_section_when_logging_then_dict(self, fresh_config):
        assert get_config().get_section("logging")["level"] == "INFO"


class TestEngineSettings:

    def test_settings_when_loaded_then_defaults_match_yaml(self, fresh_config):
        settings = get_settings(reload=True)
        assert settings.outline.refinement_level == 35
        assert settings.scoring.alignment_threshold == pytest.approx(0.78)
        assert settings.canvas.width == 1024

    def test_settings_when_override_applied_then_visible(self, fresh_config, monkeypatch):
        monkeypatch.setenv("SKETCHMATCH_OUTLINE_REFINEMENT_LEVEL", "70")
        reload_config()
        assert get_settings(reload=True).outline.refinement_level == 70

    def test_settings_when_threshold_out_of_range_then_validation_error(self):
        with pytest.raises(ValidationError):
            EngineSettings.from_dict({"outline": {"threshold": 1.5}})

    def test_settings_when_refinement_out_of_range_then_validation_error(self):
        with pytest.raises(ValidationError):
            EngineSettings.from_dict({"outline": {"refinement_level": 101}})

    def test_settings_when_content_scan_above_working_size_then_rejected(self):
        with pytest.raises(ValidationError):
            EngineSettings.from_dict({"alignment": {"content_scan_max_side": 800}, "outline": {"max_side": 640}})


class TestEnvKeyResolution:

    TREE = {"outline": {"max_side": 640, "threshold": 0.22}, "logging": {"file": {"max_bytes": 10}}}

    def test_resolve_when_nested_underscored_keys_then_path(self):
        assert resolve_env_key(self.TREE, "outline_max_side") == ["outline", "max_side"]
        assert resolve_env_key(self.TREE, "logging_file_max_bytes") == ["logging", "file", "max_bytes"]

    def test_resolve_when_section_or_unknown_then_empty(self):
        assert resolve_env_key(self.TREE, "outline") == []
        assert resolve_env_key(self.TREE, "outline_max") == []

    def test_coerce_when_types_differ_then_follow_current_value(self):
        assert coerce_like("on", False) is True
        assert coerce_like("12", 3) == 12
        assert coerce_like("abc", 3) == "abc"

    def test_reload_when_override_applied_then_recorded(self, fresh_config, monkeypatch):
        monkeypatch.setenv("SKETCHMATCH_CANVAS_WIDTH", "800")
        reload_config()
        assert get_config().overrides == {"canvas.width": 800}

    def test_reload_when_config_file_missing_then_raises(self, fresh_config, monkeypatch, tmp_path):
        monkeypatch.setenv("SKETCHMATCH_CONFIG_FILE", str(tmp_path / "absent.yaml"))
        with pytest.raises(FileNotFoundError):
            reload_config()
