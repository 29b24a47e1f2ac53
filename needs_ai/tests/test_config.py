"""
Tests for Settings
==================

Verifies that settings are read from the environment.
"""

from needs_ai.config import Settings, get_settings, resolve_env_var


class TestSettings:
    """Tests for environment-backed settings."""

    def test_defaults(self):
        settings = Settings()
        assert settings.mock_mode is False
        assert settings.max_tool_rounds == 4
        assert settings.is_production is False

    def test_mock_mode_from_app_env_var(self, monkeypatch):
        """Should read APP_MOCK_MODE with the usual boolean spellings."""
        for raw in ("true", "1", "yes", "TRUE"):
            monkeypatch.setenv("APP_MOCK_MODE", raw)
            assert Settings().mock_mode is True
        monkeypatch.setenv("APP_MOCK_MODE", "0")
        assert Settings().mock_mode is False

    def test_mock_mode_by_field_name(self):
        assert Settings(mock_mode=True).mock_mode is True

    def test_typed_values(self, monkeypatch):
        """Should coerce numeric env vars and ignore empty ones."""
        monkeypatch.setenv("MAX_TOOL_ROUNDS", "7")
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("LAKEBASE_HOST", "")
        settings = Settings()
        assert settings.max_tool_rounds == 7
        assert settings.is_production is True
        assert settings.lakebase_host is None

    def test_cached_until_cleared(self, monkeypatch):
        """Should read the environment once per process."""
        first = get_settings()
        monkeypatch.setenv("ENVIRONMENT", "production")
        assert get_settings() is first
        get_settings.cache_clear()
        assert get_settings().environment == "production"


class TestResolveEnvVar:
    """Tests for ${ENV_VAR} config values."""

    def test_resolves_set_variable(self, monkeypatch):
        monkeypatch.setenv("SERVING_ENDPOINT", "my-llm")
        assert resolve_env_var("${SERVING_ENDPOINT}") == "my-llm"

    def test_unset_variable_left_as_is(self, monkeypatch):
        monkeypatch.delenv("NOT_A_REAL_VAR", raising=False)
        assert resolve_env_var("${NOT_A_REAL_VAR}") == "${NOT_A_REAL_VAR}"

    def test_plain_value_passes_through(self):
        assert resolve_env_var("databricks-llm") == "databricks-llm"
