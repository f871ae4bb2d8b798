from __future__ import annotations

"""Logging setup for the chat client: thread/task context and config loading."""

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional
import contextvars
import json
import logging
import logging.config
import os

if TYPE_CHECKING:
    from src.client.config import Settings


_NO_CONTEXT = "-"
_thread_id = contextvars.ContextVar("chat_thread_id", default=_NO_CONTEXT)
_task_id = contextvars.ContextVar("chat_task_id", default=_NO_CONTEXT)

# Attributes every LogRecord has; anything else was passed through `extra=`.
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "thread_id", "task_id"}


def summarize_payload(value: Any, *, max_items: int = 10, max_chars: int = 200) -> Any:
    """Shorten a response body or JSON value so it fits on one log line."""
    if isinstance(value, str):
        return value if len(value) <= max_chars else f"{value[:max_chars]}...(+{len(value) - max_chars})"
    if isinstance(value, dict):
        keys = list(value)[:max_items]
        summary = {str(key): summarize_payload(value[key], max_items=max_items, max_chars=max_chars) for key in keys}
        if len(value) > max_items:
            summary["..."] = f"{len(value) - max_items} more keys"
        return summary
    if isinstance(value, (list, tuple)):
        items = [summarize_payload(item, max_items=max_items, max_chars=max_chars) for item in value[:max_items]]
        if len(value) > max_items:
            items.append(f"... {len(value) - max_items} more")
        return items
    return value


def set_log_context(*, thread_id: Optional[str] = None, task_id: Optional[str] = None) -> None:
    """Tag subsequent records in this context with a chat thread and/or task id."""
    if thread_id is not None:
        _thread_id.set(thread_id)
    if task_id is not None:
        _task_id.set(task_id)


def clear_log_context() -> None:
    _thread_id.set(_NO_CONTEXT)
    _task_id.set(_NO_CONTEXT)


@contextmanager
def task_log_context(task_id: Optional[str]) -> Iterator[None]:
    """Tag records with `task_id` for the duration of the block."""
    if task_id is None:
        yield
        return
    token = _task_id.set(task_id)
    try:
        yield
    finally:
        _task_id.reset(token)


class LoggingContextFilter(logging.Filter):
    """Copy the current thread/task ids onto each record."""
    def filter(self, record: logging.LogRecord) -> bool:
        record.thread_id = _thread_id.get()
        record.task_id = _task_id.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, for log collectors in production."""
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread_id": getattr(record, "thread_id", _NO_CONTEXT),
            "task_id": getattr(record, "task_id", _NO_CONTEXT),
        }
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def logging_config_path(settings: "Settings") -> Path:
    """Pick the dictConfig file for the settings' environment; `LOG_CONFIG` overrides it."""
    override = os.getenv("LOG_CONFIG")
    if override:
        path = Path(override)
        return path if path.is_absolute() else settings.project_root / path
    name = "logging.prod.json" if settings.app_env.lower() in {"prod", "production"} else "logging.dev.json"
    return settings.project_root / "config" / name


def configure_logging(settings: "Settings") -> Path:
    """Apply the environment's logging config and return the file that was used.

    `LOG_FORMAT=json` switches every configured handler to the JSON formatter.
    Without a config file the root logger falls back to INFO on stderr.
    """
    path = logging_config_path(settings)
    if path.exists():
        config = json.loads(path.read_text(encoding="utf-8"))
        if os.getenv("LOG_FORMAT", "").lower() == "json" and "json" in config.get("formatters", {}):
            for handler in config.get("handlers", {}).values():
                handler["formatter"] = "json"
        logging.config.dictConfig(config)
    else:
        logging.basicConfig(level=logging.INFO)
        for handler in logging.getLogger().handlers:
            handler.addFilter(LoggingContextFilter())
    level = os.getenv("CHAT_LOG_LEVEL")
    if level:
        logging.getLogger().setLevel(level.upper())
    return path
