"""relaygraph.core.config

Two config surfaces only:
1) `config/default.yaml`
2) Environment variables (``RELAYGRAPH_`` prefix, ``__`` for nesting)

The user's own choices (active relay, theme) are not configuration. They live in
the local state record, see :mod:`relaygraph.core.local_state`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from relaygraph.core.exceptions import ConfigError


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _positive(v: float, name: str) -> float:
    if v <= 0:
        raise ValueError(f"{name} must be > 0")
    return v


class RelaysConfig(BaseModel):
    urls: list[str] = ["wss://relay.damus.io", "wss://relay.nostr.band", "wss://nos.lol"]
    verify_ids: bool = True

    @field_validator("urls")
    @classmethod
    def relay_urls_must_be_websocket(cls, v: list[str]) -> list[str]:
        for url in v:
            if not url.startswith(("ws://", "wss://")):
                raise ValueError(f"relay url must use ws:// or wss://, got {url}")
        return v


class TimeoutsConfig(BaseModel):
    """Per-call deadlines, in seconds."""

    lookup_s: float = 1.5
    notifications_s: float = 3.0
    profile_s: float = 3.0
    aggregate_s: float = 5.0

    @field_validator("lookup_s", "notifications_s", "profile_s", "aggregate_s")
    @classmethod
    def must_be_positive(cls, v: float, info) -> float:
        return _positive(v, info.field_name)


class PublishConfig(BaseModel):
    max_attempts: int = 3
    backoff_s: float = 1.0
    ack_timeout_s: float = 5.0

    @field_validator("max_attempts")
    @classmethod
    def at_least_one_attempt(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be >= 1")
        return v

    @field_validator("backoff_s")
    @classmethod
    def backoff_not_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("backoff_s must be >= 0")
        return v


class ZapsConfig(BaseModel):
    poll_interval_s: float = 5.0
    confirmation_window_s: float = 300.0
    invoice_timeout_s: float = 10.0
    # Receipts older than the request minus this slack are ignored when reconciling.
    receipt_lookback_s: int = 60

    @field_validator("poll_interval_s", "confirmation_window_s", "invoice_timeout_s")
    @classmethod
    def must_be_positive(cls, v: float, info) -> float:
        return _positive(v, info.field_name)


class ThreadsConfig(BaseModel):
    max_depth: int = 3
    reply_limit: int = 500


class CacheConfig(BaseModel):
    ttl_s: float = 30.0


class HttpConfig(BaseModel):
    timeout_s: float = 10.0
    rate_limit_rps: float = 5.0
    circuit_breaker_threshold: int = 5
    circuit_breaker_cooldown_s: float = 30.0
    # Only enable when the HTTP transport is routed through Tor.
    allow_onion: bool = False


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = False


class Config(BaseSettings):
    """Root configuration. Single source of truth."""

    data_dir: Path = Path("data")

    relays: RelaysConfig = Field(default_factory=RelaysConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    publish: PublishConfig = Field(default_factory=PublishConfig)
    zaps: ZapsConfig = Field(default_factory=ZapsConfig)
    threads: ThreadsConfig = Field(default_factory=ThreadsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"env_prefix": "RELAYGRAPH_", "env_nested_delimiter": "__"}

    @classmethod
    def from_yaml(cls, path: Path, *, overlay: dict[str, Any] | None = None) -> Config:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        try:
            raw = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Config file is not valid YAML: {path}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"Config root must be a mapping: {path}")

        if overlay:
            raw = _deep_merge(raw, overlay)

        try:
            return cls(**raw)
        except ValueError as e:
            raise ConfigError(str(e)) from e

    @classmethod
    def from_repo_defaults(cls, repo_root: Path | None = None) -> Config:
        root = repo_root or Path.cwd()
        return cls.from_yaml(root / "config" / "default.yaml")
