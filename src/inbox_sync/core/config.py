"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field


class AccountSettings(BaseModel):
    """Connection settings for one monitored IMAP account."""

    id: str = Field(default="account1", description="Stable account identifier")
    host: str = Field(default="imap.gmail.com", description="IMAP hostname")
    port: int = Field(default=993, description="IMAP port, typically 993 for SSL")
    username: str | None = Field(default=None, description="Account username")
    app_password: str | None = Field(default=None, description="Gmail app password")
    mailbox: str = Field(default="INBOX", description="Folder to monitor")
    use_ssl: bool = Field(default=True, description="Whether to enforce SSL")
    backlog_days: int = Field(
        default=30, ge=1, description="Recency window for the backlog fetch"
    )

    @property
    def has_credentials(self) -> bool:
        """Return ``True`` when both username and password are present."""
        return bool(self.username) and bool(self.app_password)


class SyncSettings(BaseModel):
    """Settings controlling the connector and coordinator loops."""

    reconnect_delay_seconds: float = Field(
        default=5.0, ge=0.0, description="Delay before a reconnection attempt"
    )
    keepalive_interval_seconds: float = Field(
        default=60.0, gt=0.0, description="Folder re-check interval while idling"
    )
    idle_poll_seconds: float = Field(
        default=1.0, gt=0.0, description="Socket poll slice used inside IDLE"
    )
    batch_size: int = Field(
        default=50, ge=1, description="Messages fetched per IMAP batch"
    )
    queue_size: int = Field(
        default=100, ge=1, description="Raw messages buffered per connector"
    )
    shutdown_grace_seconds: float = Field(
        default=10.0, gt=0.0, description="Wait for a connector to stop cleanly"
    )
    persistence_timeout_seconds: float = Field(
        default=10.0, gt=0.0, description="Upper bound for a single store write"
    )


class StorageSettings(BaseModel):
    """Settings for local persistence."""

    db_path: Path = Field(
        default=Path("./inbox_sync.db"), description="SQLite database path"
    )


class NotificationSettings(BaseModel):
    """Outbound notification targets."""

    slack_webhook_url: str | None = Field(
        default=None, description="Slack incoming webhook URL"
    )
    webhook_url: str | None = Field(
        default=None, description="Generic webhook receiving JSON events"
    )
    timeout_seconds: float = Field(
        default=10.0, gt=0.0, description="Request timeout for notification calls"
    )


class LlmSettings(BaseModel):
    """Settings for the local LLM provider."""

    enabled: bool = Field(
        default=False, description="Use the LLM for reply suggestions"
    )
    base_url: str = Field(
        default="http://localhost:11434", description="Ollama server URL"
    )
    model: str = Field(default="gpt-oss:20b", description="Model identifier")
    timeout_seconds: int = Field(
        default=30, description="Request timeout for LLM calls"
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Sampling temperature for LLM completions",
    )
    max_output_tokens: int | None = Field(
        default=200,
        ge=32,
        description="Maximum tokens to request from the provider",
    )


class ReplySettings(BaseModel):
    """Settings for the reply suggestion engine."""

    context_path: Path = Field(
        default=Path("./vector_db/context_docs.json"),
        description="Flat JSON file holding context snippets",
    )
    product_context: str = Field(
        default="I am applying for a job position.",
        description="Free text describing the mailbox owner",
    )
    booking_link: str = Field(
        default="https://cal.com/example", description="Meeting booking URL"
    )
    reset_on_startup: bool = Field(
        default=True,
        description="Overwrite stored snippets with the defaults at startup",
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )


class WebSettings(BaseModel):
    """Bind address for the HTTP façade."""

    host: str = Field(default="127.0.0.1", description="Listen address")
    port: int = Field(default=3000, description="Listen port")


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    accounts: list[AccountSettings] = Field(default_factory=list)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    notification: NotificationSettings = Field(default_factory=NotificationSettings)
    llm: LlmSettings = Field(default_factory=LlmSettings)
    reply: ReplySettings = Field(default_factory=ReplySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    web: WebSettings = Field(default_factory=WebSettings)


ENV_PREFIX = "INBOX_SYNC_"


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _listify(node: Any) -> Any:
    """Turn dictionaries keyed only by digits into ordered lists."""
    if not isinstance(node, dict):
        return node
    converted = {key: _listify(value) for key, value in node.items()}
    if converted and all(key.isdigit() for key in converted):
        return [converted[key] for key in sorted(converted, key=int)]
    return converted


def _collect_env_values(
    env_file: Path | str | None, *, include_environment: bool = True
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if key and key.startswith(ENV_PREFIX)
            }

    env_values = (
        {key: value for key, value in os.environ.items() if key.startswith(ENV_PREFIX)}
        if include_environment
        else {}
    )

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if not path:
            continue
        normalized_value: Any = value
        if isinstance(value, str) and value == "":
            normalized_value = None
        elif isinstance(value, str):
            lowercase_value = value.lower()
            if lowercase_value == "true":
                normalized_value = True
            elif lowercase_value == "false":
                normalized_value = False
        _merge_into_tree(collected, path, normalized_value)

    return cast(dict[str, Any], _listify(collected))


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment=include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AccountSettings",
    "AppSettings",
    "LlmSettings",
    "LoggingSettings",
    "NotificationSettings",
    "ReplySettings",
    "StorageSettings",
    "SyncSettings",
    "WebSettings",
    "load_app_settings",
]
