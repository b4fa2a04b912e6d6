"""Configuration loading.

Non-secret settings live in a TOML file tracked next to the deployment
(``config.toml`` by default, or the path in ``DIGESTBOT_CONFIG``).
Secrets (API keys, bot token) must remain in the environment / ``.env``.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError

# Rough conversion used everywhere a token budget has to become a length budget.
CHARS_PER_TOKEN = 4

DEFAULT_CONFIG_PATH = "config.toml"
TRUNCATION_POLICIES = ("oldest_first", "newest_first")
LLM_PROVIDERS = ("openai", "anthropic")

SUMMARIZER_SYSTEM_PROMPT: str = (
    "You are a summarizer of large amount of content for a technical team. "
    "Summarize the following thoroughly:"
)


@dataclass
class DatabaseConfig:
    url: str = "digestbot.db"


@dataclass
class ServiceConfig:
    produce_digest_interval_seconds: float = 24 * 60 * 60
    message_log_directory: Path = Path("message_logs")
    port: int = 3000
    host: str = "127.0.0.1"
    max_gpt_request_tokens: int = 8192
    max_gpt_response_tokens: int = 1024
    prompt_overhead_tokens: int = 128
    truncation_policy: str = "oldest_first"
    prune_summarized_logs: bool = False

    @property
    def input_token_budget(self) -> int:
        """Tokens left for message/summary text once the response and prompt chrome are reserved."""
        return self.max_gpt_request_tokens - self.max_gpt_response_tokens - self.prompt_overhead_tokens

    @property
    def summary_threshold_chars(self) -> int:
        """Buffered characters that trigger a summarization run."""
        return self.input_token_budget * CHARS_PER_TOKEN


@dataclass
class DiscordConfig:
    channel_ids: list[int] = field(default_factory=list)


@dataclass
class LLMConfig:
    provider: str = "openai"
    model: str = "gpt-4"
    timeout_seconds: float = 120.0


@dataclass
class AppConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)

    def validate(self) -> None:
        """Raise ConfigError if the settings cannot drive the pipeline."""
        service = self.service
        if service.produce_digest_interval_seconds <= 0:
            raise ConfigError("service.produce_digest_interval_seconds must be positive")
        if service.max_gpt_response_tokens <= 0:
            raise ConfigError("service.max_gpt_response_tokens must be positive")
        if service.input_token_budget <= 0:
            raise ConfigError(
                "service.max_gpt_request_tokens must exceed max_gpt_response_tokens "
                f"+ prompt_overhead_tokens (got {service.max_gpt_request_tokens})"
            )
        if service.truncation_policy not in TRUNCATION_POLICIES:
            raise ConfigError(
                f"Unknown truncation_policy {service.truncation_policy!r}; "
                f"expected one of {', '.join(TRUNCATION_POLICIES)}"
            )
        if self.llm.provider not in LLM_PROVIDERS:
            raise ConfigError(f"Unknown llm.provider {self.llm.provider!r}")


def _ids_from_list(raw: Any) -> list[int]:
    if isinstance(raw, str):
        raw = raw.split(",")
    ids: list[int] = []
    for item in raw or []:
        text = str(item).strip()
        if not text:
            continue
        if not text.isdigit():
            raise ConfigError(f"discord.channel_ids entry {item!r} is not a numeric id")
        ids.append(int(text))
    return ids


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table")
    return section


def config_from_mapping(data: dict[str, Any]) -> AppConfig:
    """Build an AppConfig from parsed TOML data, applying env overrides."""
    database = _section(data, "database")
    service = _section(data, "service")
    discord = _section(data, "discord")
    llm = _section(data, "llm")

    try:
        service_cfg = ServiceConfig(**service)
        service_cfg.message_log_directory = Path(service_cfg.message_log_directory).expanduser()
        cfg = AppConfig(
            database=DatabaseConfig(**database),
            service=service_cfg,
            discord=DiscordConfig(channel_ids=_ids_from_list(discord.get("channel_ids", []))),
            llm=LLMConfig(**llm),
        )
    except TypeError as exc:
        # Unknown keys surface as unexpected keyword arguments
        raise ConfigError(f"Invalid configuration: {exc}") from exc

    db_override = os.getenv("DIGESTBOT_DB_PATH", "").strip()
    if db_override:
        cfg.database.url = db_override

    cfg.validate()
    return cfg


def load_config(path: str | os.PathLike[str] | None = None) -> AppConfig:
    """Load configuration from a TOML file.

    - If ``path`` is given, use it.
    - Else use ``DIGESTBOT_CONFIG`` or ``config.toml`` in the working directory.
    """
    config_path = Path(path or os.getenv("DIGESTBOT_CONFIG", DEFAULT_CONFIG_PATH)).expanduser()
    try:
        with config_path.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {config_path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Config file {config_path} is not valid TOML: {exc}") from exc
    return config_from_mapping(data)


def require_env(name: str) -> str:
    """Return a required secret from the environment or raise ConfigError."""
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigError(f"No {name} provided")
    return value
