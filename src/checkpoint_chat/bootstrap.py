from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from checkpoint_chat.app_config import AppConfig, RuntimeEnv
from checkpoint_chat.chat import ChatApp
from checkpoint_chat.continuation import ContinuationPromptRenderer
from checkpoint_chat.logging_config import setup_logging
from checkpoint_chat.memory import ActivityLog, CheckpointStore, MemoryStore, prune_checkpoints
from checkpoint_chat.provider import create_provider
from checkpoint_chat.services.session_controller import SessionController
from checkpoint_chat.system_prompt import get_system_prompt
from checkpoint_chat.token_monitor import merge_model_limits
from checkpoint_chat.turn_engine import TurnEngine


@dataclass
class AppRuntime:
    chat: ChatApp
    memory_store: MemoryStore
    log_descriptions: list[str]
    pruned_checkpoints: int


def _resolve_db_path(memory_db_path: str) -> str:
    if memory_db_path == ":memory:":
        return memory_db_path
    db_path = Path(memory_db_path)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    return str(db_path)


def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)
    provider = create_provider(app.provider_name, env.provider_api_key)

    memory_store = MemoryStore(_resolve_db_path(app.memory_db_path))
    checkpoint_store = CheckpointStore(memory_store)
    activity_log = ActivityLog(memory_store)
    pruned = prune_checkpoints(
        memory_store,
        retention_days=app.checkpoint_retention_days,
        max_checkpoints=app.max_stored_checkpoints,
    )

    turn_engine = TurnEngine(
        provider=provider,
        model=app.model,
        max_tokens=app.max_tokens,
        temperature=app.temperature,
        system_prompt=get_system_prompt(),
    )
    controller = SessionController(
        turn_engine=turn_engine,
        checkpoint_store=checkpoint_store,
        activity_log=activity_log,
        renderer=ContinuationPromptRenderer(
            tail_messages=app.continuation_tail_messages,
            truncate_chars=app.continuation_truncate_chars,
        ),
        model_limits=merge_model_limits(app.model_limits),
    )
    logger.info(f"Runtime ready: provider={app.provider_name}, model={app.model}, db={app.memory_db_path}")

    return AppRuntime(
        chat=ChatApp(controller, show_spinner=app.show_spinner),
        memory_store=memory_store,
        log_descriptions=log_descriptions,
        pruned_checkpoints=pruned,
    )
