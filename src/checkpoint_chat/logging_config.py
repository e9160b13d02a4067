from __future__ import annotations

import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

DEFAULT_LOG_FILE = ".checkpoint_chat/checkpoint-chat.log"

_CONSOLE_FORMAT = "<level>{level:<8}</level> | <cyan>{name}</cyan> - <level>{message}</level>"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"


@dataclass(frozen=True)
class SinkSpec:
    """One entry of the ``LogConsumers`` config list after validation."""

    kind: str
    level: str
    options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, entry: dict[str, Any], default_level: str) -> SinkSpec:
        kind = str(entry.get("type", "")).strip().lower()
        level = str(entry.get("level", default_level)).strip().upper()
        logger.level(level)  # ValueError for unknown level names
        options = {k: v for k, v in entry.items() if k not in ("type", "level")}
        return cls(kind=kind, level=level, options=options)


def _add_console(spec: SinkSpec) -> str:
    # stderr keeps log lines out of the streamed reply on stdout
    logger.add(
        sys.stderr,
        level=spec.level,
        format=_CONSOLE_FORMAT,
        colorize=spec.options.get("colorize"),
    )
    return f"console (stderr, {spec.level})"


def _add_file(spec: SinkSpec) -> str:
    path = Path(str(spec.options.get("path", DEFAULT_LOG_FILE)))
    rotation = spec.options.get("rotation", "5 MB")
    path.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(path),
        level=spec.level,
        format=_FILE_FORMAT,
        rotation=rotation,
        retention=spec.options.get("retention", 5),
        encoding="utf-8",
    )
    return f"file ({path}, {spec.level}, rotate at {rotation})"


_SINK_BUILDERS: dict[str, Callable[[SinkSpec], str]] = {
    "console": _add_console,
    "file": _add_file,
}

DEFAULT_SINKS: tuple[dict[str, Any], ...] = (
    {"type": "console", "level": "WARNING"},
    {"type": "file", "path": DEFAULT_LOG_FILE},
)


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace every loguru sink with the configured ones.

    ``consumers`` holds ``LogConsumers`` entries: a ``type`` (console or file),
    an optional ``level`` and sink options such as ``path``. Entries that
    cannot be parsed are skipped with a warning. Returns one description per
    sink added.
    """
    logger.remove()

    entries = list(DEFAULT_SINKS) if consumers is None else consumers
    specs: list[SinkSpec] = []
    rejected: list[str] = []
    for entry in entries:
        try:
            spec = SinkSpec.parse(entry, level)
        except ValueError as ex:
            rejected.append(f"{entry!r}: {ex}")
            continue
        if spec.kind not in _SINK_BUILDERS:
            rejected.append(f"unknown log consumer type {spec.kind!r}")
            continue
        specs.append(spec)

    descriptions = [_SINK_BUILDERS[spec.kind](spec) for spec in specs]
    for reason in rejected:
        logger.warning(f"Skipped log consumer: {reason}")
    return descriptions
