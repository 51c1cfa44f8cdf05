"""Tests for configuration."""

from debug_agent.config import Settings, get_settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch, tmp_path):
        """Test default settings."""
        monkeypatch.chdir(tmp_path)
        settings = Settings()

        assert settings.recordings_dir == "./recordings"
        assert settings.extension_path is None
        assert settings.control_enabled is True
        assert settings.control_host == "localhost"
        assert settings.control_port == 9229
        assert settings.control_path == "/debug-agent"
        assert settings.replay_max_delay_ms == 3000
        assert settings.min_speed == 0.1
        assert settings.navigation_timeout_ms == 60000
        assert settings.mousemove_throttle_ms == 50
        assert settings.scroll_debounce_ms == 100
        assert settings.refresh_min_interval_ms == 500
        assert settings.close_grace_ms == 100
        assert settings.default_viewport_width == 1280
        assert settings.default_viewport_height == 720
        assert settings.log_level == "INFO"
        assert settings.log_json is False
        assert "--disable-dev-shm-usage" in settings.browser_args

    def test_environment_overrides(self, monkeypatch, tmp_path):
        """Test settings are read from prefixed environment variables."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("DEBUG_AGENT_CONTROL_PORT", "9300")
        monkeypatch.setenv("DEBUG_AGENT_RECORDINGS_DIR", "/tmp/sessions")
        monkeypatch.setenv("DEBUG_AGENT_LOG_JSON", "true")

        settings = get_settings()

        assert settings.control_port == 9300
        assert settings.recordings_dir == "/tmp/sessions"
        assert settings.log_json is True

    def test_dotenv_file(self, monkeypatch, tmp_path):
        """Test settings are read from a .env file."""
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("DEBUG_AGENT_REPLAY_MAX_DELAY_MS=1500\nUNRELATED=1\n")

        assert Settings().replay_max_delay_ms == 1500
