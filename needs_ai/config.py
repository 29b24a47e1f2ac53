"""
Needs AI - Settings
===================

Environment-backed settings shared by the engine, the tools and the HTTP
layer. Values are read once per process; call `get_settings.cache_clear()`
after changing the environment (tests do this).

Environment:
    SERVING_ENDPOINT     Default model serving endpoint
    MODEL_TEMPERATURE    Default sampling temperature
    MODEL_MAX_TOKENS     Default completion token limit
    MAX_TOOL_ROUNDS      Upper bound on model/tool round trips per flow
    APP_MOCK_MODE        true/1/yes to run tools with canned results
    LAKEBASE_*           Directory database connection (HOST, PORT, DATABASE,
                         SCHEMA, USER, PASSWORD)
    ENVIRONMENT          development / production
    LOG_LEVEL            Root log level for the server
"""

import os
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide configuration. Each field reads the upper-cased env var of its name."""
    model_config = SettingsConfigDict(
        frozen=True,
        protected_namespaces=(),
        populate_by_name=True,
        env_ignore_empty=True,
        extra="ignore",
    )

    serving_endpoint: str = "databricks-meta-llama-3-3-70b-instruct"
    model_temperature: float = 0.2
    model_max_tokens: int = 2048
    max_tool_rounds: int = 4
    mock_mode: bool = Field(default=False, validation_alias="APP_MOCK_MODE")

    lakebase_host: Optional[str] = None
    lakebase_port: int = 443
    lakebase_database: str = "databricks_postgres"
    lakebase_schema: str = "public"
    lakebase_user: Optional[str] = None
    lakebase_password: Optional[str] = None

    environment: str = "development"
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process settings."""
    return Settings()


def resolve_env_var(value: Optional[str]) -> Optional[str]:
    """Resolve a ${ENV_VAR} config value; other values pass through unchanged."""
    if value and value.startswith("${") and value.endswith("}"):
        env_name = value[2:-1]
        return os.getenv(env_name, value)
    return value
