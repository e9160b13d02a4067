from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str


@dataclass
class AppConfig:
    provider_name: str
    model: str
    max_tokens: int
    temperature: float
    memory_db_path: str
    model_limits: dict[str, int] = field(default_factory=dict)
    continuation_tail_messages: int = 5
    continuation_truncate_chars: int = 200
    checkpoint_retention_days: int = 30
    max_stored_checkpoints: int = 200
    log_level: str = "INFO"
    log_consumers: list | None = None
    show_spinner: bool = True


def load_json_config(config_path: Path | None = None) -> dict:
    path = config_path or Path.cwd() / "config.json"
    if path.exists():
        with open(path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        provider_name=config.get("Provider", "anthropic").strip().lower(),
        model=config.get("Model", "claude-sonnet-4-20250514"),
        max_tokens=int(config.get("MaxTokens", 8192)),
        temperature=float(config.get("Temperature", 1.0)),
        memory_db_path=str(config.get("MemoryDbPath", ".checkpoint_chat/checkpoints.db")),
        model_limits={str(k): int(v) for k, v in (config.get("ModelLimits") or {}).items()},
        continuation_tail_messages=int(config.get("ContinuationTailMessages", 5)),
        continuation_truncate_chars=int(config.get("ContinuationTruncateChars", 200)),
        checkpoint_retention_days=int(config.get("CheckpointRetentionDays", 30)),
        max_stored_checkpoints=int(config.get("MaxStoredCheckpoints", 200)),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
        show_spinner=_to_bool(config.get("ShowSpinner"), default=True),
    )


def resolve_runtime_env(provider_name: str) -> RuntimeEnv:
    if provider_name == "openai":
        provider_env_var = "OPENAI_API_KEY"
    else:
        provider_env_var = "ANTHROPIC_API_KEY"
    return RuntimeEnv(
        provider_api_key=os.environ.get(provider_env_var, ""),
        provider_env_var=provider_env_var,
    )
