"""Tests for settings validation"""
import pytest
from pydantic import ValidationError

from crosspost.config.settings import Settings, get_settings, settings as global_settings
from crosspost.utils.logger import setup_logger


class TestSettings:
    def test_defaults(self):
        config = Settings(ENVIRONMENT="test")
        assert config.MAX_CONCURRENT_PUBLISHES == 5
        assert config.TWITTER_CHUNK_SIZE_BYTES == 5 * 1024 * 1024
        assert config.TOKEN_REFRESH_BUFFER_SECONDS == 300
        assert config.INSTAGRAM_POLL_MAX_ATTEMPTS == 12

    def test_log_level_is_normalized(self):
        assert Settings(ENVIRONMENT="test", LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"

    def test_invalid_environment(self):
        with pytest.raises(ValidationError):
            Settings(ENVIRONMENT="qa")

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(ENVIRONMENT="test", MAX_CONCURRENT_PUBLISHES=0)

    def test_environment_variables_are_read(self, monkeypatch):
        monkeypatch.setenv("LINKEDIN_API_BASE", "https://linkedin.test/v2")
        assert Settings().LINKEDIN_API_BASE == "https://linkedin.test/v2"

    def test_get_settings_returns_module_instance(self):
        assert get_settings() is global_settings


def test_setup_logger_writes_file_sink(tmp_path):
    log_file = tmp_path / "crosspost.log"

    configured = setup_logger("INFO", str(log_file))
    configured.info("token refreshed")
    configured.remove()

    assert "token refreshed" in log_file.read_text()
