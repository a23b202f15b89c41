"""
Структурированное логирование сессий авторинга.

Две формы вывода:
- readable (по умолчанию): "[sess_1] Input captured [stage=IDEATION]"
- json (LOG_FORMAT=json): одна JSON-строка на запись

К каждой записи добавляются session_id и поля, привязанные через
set_session(..., **fields) или bind(). Тексты ответов учителя (поля
из DOCUMENT_FIELDS) по умолчанию заменяются длиной; полные значения
пишутся только при logging.log_document_values: true.

Использование:
    from blueprint_flow.logger import logger

    logger.set_session("sess_123", graph="sop")
    logger.info("Input captured", stage="IDEATION", text=answer)
    logger.event("flow_transition", action="continue", to_stage="JOURNEY")
"""

import json
import logging
import os
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from blueprint_flow.settings import settings


# Поля, в которых могут оказаться ответы учителя
DOCUMENT_FIELDS = frozenset({"text", "answer"})

_session_var: ContextVar[Optional[str]] = ContextVar("blueprint_session", default=None)
_bound_var: ContextVar[Optional[Dict[str, Any]]] = ContextVar("blueprint_bound", default=None)


def _json_mode() -> bool:
    return os.environ.get("LOG_FORMAT", "readable").lower() == "json"


def _level_from_config() -> int:
    name = os.environ.get("LOG_LEVEL") or settings.get_nested("logging.level", "INFO")
    return getattr(logging, str(name).upper(), logging.INFO)


class StructuredLogger:
    """
    Обёртка над logging.Logger с контекстом сессии.

    Контекст хранится в ContextVar, поэтому параллельные сессии
    в разных потоках и asyncio-задачах не смешиваются.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)
        if not self.logger.handlers:
            self._configure()

    def _configure(self) -> None:
        level = _level_from_config()
        handler = logging.StreamHandler()
        handler.setLevel(level)
        if _json_mode():
            handler.setFormatter(logging.Formatter("%(message)s"))
        else:
            handler.setFormatter(logging.Formatter(
                "[%(asctime)s] %(levelname)s - %(message)s", datefmt="%H:%M:%S"
            ))
        self.logger.setLevel(level)
        self.logger.addHandler(handler)
        self.logger.propagate = False

    # =========================================================================
    # Контекст
    # =========================================================================

    @property
    def session_id(self) -> Optional[str]:
        return _session_var.get()

    @property
    def bound_fields(self) -> Dict[str, Any]:
        return dict(_bound_var.get() or {})

    def set_session(self, session_id: Optional[str], **fields: Any) -> None:
        """Привязать сессию; fields заменяют ранее привязанные поля"""
        _session_var.set(session_id)
        _bound_var.set(dict(fields))

    def clear_session(self) -> None:
        _session_var.set(None)
        _bound_var.set(None)

    def bind(self, **fields: Any) -> None:
        """Добавить поля ко всем следующим записям текущего контекста"""
        merged = self.bound_fields
        merged.update(fields)
        _bound_var.set(merged)

    def unbind(self, *names: str) -> None:
        merged = self.bound_fields
        for name in names:
            merged.pop(name, None)
        _bound_var.set(merged)

    @contextmanager
    def bound(self, **fields: Any) -> Iterator["StructuredLogger"]:
        """Временная привязка полей на время блока with"""
        token = _bound_var.set({**self.bound_fields, **fields})
        try:
            yield self
        finally:
            _bound_var.reset(token)

    # =========================================================================
    # Форматирование
    # =========================================================================

    @staticmethod
    def _redact(fields: Dict[str, Any]) -> Dict[str, Any]:
        if settings.get_nested("logging.log_document_values", False):
            return fields
        redacted = {}
        for key, value in fields.items():
            if key in DOCUMENT_FIELDS and isinstance(value, str):
                redacted[key] = f"<{len(value)} chars>"
            else:
                redacted[key] = value
        return redacted

    def _record(self, level: str, message: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "logger": self.name,
            "message": message,
        }
        if self.session_id:
            record["session_id"] = self.session_id
        record.update(self.bound_fields)
        record.update(self._redact(fields))
        return record

    def _readable(self, message: str, fields: Dict[str, Any]) -> str:
        shown = {**self.bound_fields, **self._redact(fields)}
        if shown:
            message = f"{message} [{', '.join(f'{k}={v}' for k, v in shown.items())}]"
        if self.session_id:
            message = f"[{self.session_id}] {message}"
        return message

    def _render(self, level: str, message: str, fields: Dict[str, Any]) -> str:
        if _json_mode():
            return json.dumps(self._record(level, message, fields), ensure_ascii=False, default=str)
        return self._readable(message, fields)

    # =========================================================================
    # Запись
    # =========================================================================

    def debug(self, message: str, **fields: Any) -> None:
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(self._render("DEBUG", message, fields))

    def info(self, message: str, **fields: Any) -> None:
        self.logger.info(self._render("INFO", message, fields))

    def warning(self, message: str, **fields: Any) -> None:
        self.logger.warning(self._render("WARNING", message, fields))

    def error(self, message: str, **fields: Any) -> None:
        self.logger.error(self._render("ERROR", message, fields))

    def exception(self, message: str, **fields: Any) -> None:
        """Запись ERROR с traceback текущего исключения"""
        if _json_mode():
            fields["traceback"] = traceback.format_exc()
            self.logger.error(self._render("ERROR", message, fields))
        else:
            self.logger.exception(self._render("ERROR", message, fields))

    def metric(self, name: str, value: Any, **dimensions: Any) -> None:
        """
        Числовая метрика сессии.

        Example:
            logger.metric("progress", 0.33, stage_completed="IDEATION")
        """
        self.logger.info(self._render("METRIC", name, {"value": value, **dimensions}))

    def event(self, event_type: str, **data: Any) -> None:
        """
        Событие авторинга для аналитики.

        Example:
            logger.event("flow_transition", action="back", to_stage="IDEATION")
        """
        self.logger.info(self._render("EVENT", event_type, data))


logger = StructuredLogger("blueprint_flow")


def create_test_logger(name: str = "test") -> StructuredLogger:
    """Отдельный логгер для тестов"""
    return StructuredLogger(f"blueprint_flow.{name}")
