"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class StorageConfig(BaseModel):
    db_path: str = "./data/zapgpt.db"


class WhatsAppConfig(BaseModel):
    """Connection settings for the WPPConnect server bridge."""

    base_url: str = "http://localhost:21465"
    secret_key: str = ""
    webhook_url: str = "http://localhost:8000/webhooks/wppconnect"
    timeout: float = 60.0


class EngineConfig(BaseModel):
    debounce_seconds: float = 15.0
    fragment_separator: str = " \n "
    max_ai_attempts: int = 3
    typing_delay_per_char: float = 0.1
    greeting_text: str = "Hi! Reach out any time 😊"
    apology_text: str = "Sorry, I couldn't process your message right now. Please try again."


class OpenAIConfig(BaseModel):
    poll_interval: float = 3.0
    max_polls: int = 30
    base_url: Optional[str] = None


class AnthropicConfig(BaseModel):
    max_tokens: int = 1024
    base_url: Optional[str] = None


class ProvidersConfig(BaseModel):
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    anthropic: AnthropicConfig = Field(default_factory=AnthropicConfig)


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000
    keepalive_seconds: float = 15.0


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "console"  # "console" | "json"
    data_dir: str = "./data"
    storage: StorageConfig = Field(default_factory=StorageConfig)
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # data_dir may be referenced by other values as ${data_dir}
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
