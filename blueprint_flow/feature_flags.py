"""
Feature flags оркестратора.

Источники значений (по возрастанию приоритета):
1. FeatureFlags.DEFAULTS
2. секция feature_flags в settings.yaml
3. переменные окружения FF_<NAME>
4. runtime overrides (set_override / overridden / группы)

Использование:
    from blueprint_flow.feature_flags import flags

    if flags.input_validation:
        result = validator.validate(step, text)

    with flags.overridden(autosave=False):
        flow.submit_input("draft")
"""

import functools
import os
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from blueprint_flow.settings import settings


TRUE_VALUES = ("true", "1", "yes", "on")


def parse_flag(raw: str) -> bool:
    return raw.strip().lower() in TRUE_VALUES


class FeatureFlags:
    """Набор флагов с overrides из окружения и runtime"""

    DEFAULTS: Dict[str, bool] = {
        "input_validation": True,        # правила min_length/max_length/pattern
        "autosave": True,                # save() после каждой мутации
        "stuck_recovery": True,          # рекомендации застрявшему пользователю
        "allow_skip_required": False,    # skip обязательных шагов в новых сессиях
    }

    GROUPS: Dict[str, List[str]] = {
        # поведение по умолчанию; выключать только для отладки
        "core": ["input_validation", "autosave", "stuck_recovery"],
        # ослабляет проверки навигации
        "permissive": ["allow_skip_required"],
    }

    def __init__(self):
        self._flags: Dict[str, bool] = {}
        self._sources: Dict[str, str] = {}
        self._overrides: Dict[str, bool] = {}
        self._load_flags()

    def _load_flags(self) -> None:
        self._flags = dict(self.DEFAULTS)
        self._sources = {name: "default" for name in self._flags}

        configured = settings.get_nested("feature_flags", {})
        if isinstance(configured, dict):
            for name, value in configured.items():
                if isinstance(value, bool):
                    self._flags[name] = value
                    self._sources[name] = "settings"

        for name in list(self._flags):
            raw = os.environ.get(f"FF_{name.upper()}")
            if raw is not None:
                self._flags[name] = parse_flag(raw)
                self._sources[name] = "env"

    def reload(self) -> None:
        """Перечитать settings и окружение; runtime overrides сбрасываются"""
        self._overrides.clear()
        self._load_flags()

    def is_enabled(self, flag: str) -> bool:
        """Неизвестный флаг считается выключенным"""
        if flag in self._overrides:
            return self._overrides[flag]
        return self._flags.get(flag, False)

    def source_of(self, flag: str) -> Optional[str]:
        """Откуда взято текущее значение: default | settings | env | override"""
        if flag in self._overrides:
            return "override"
        return self._sources.get(flag)

    # =========================================================================
    # Runtime overrides
    # =========================================================================

    def set_override(self, flag: str, value: bool) -> None:
        self._overrides[flag] = bool(value)

    def clear_override(self, flag: str) -> None:
        self._overrides.pop(flag, None)

    def clear_all_overrides(self) -> None:
        self._overrides.clear()

    @contextmanager
    def overridden(self, **values: bool) -> Iterator["FeatureFlags"]:
        """Временные overrides; прежние значения восстанавливаются на выходе"""
        previous = {name: self._overrides.get(name) for name in values}
        for name, value in values.items():
            self.set_override(name, value)
        try:
            yield self
        finally:
            for name, value in previous.items():
                if value is None:
                    self.clear_override(name)
                else:
                    self._overrides[name] = value

    # =========================================================================
    # Группы
    # =========================================================================

    def is_group_enabled(self, group: str, require_all: bool = False) -> bool:
        members = self.GROUPS.get(group, [])
        if not members:
            return False
        check = all if require_all else any
        return check(self.is_enabled(name) for name in members)

    def enable_group(self, group: str) -> None:
        for name in self.GROUPS.get(group, []):
            self.set_override(name, True)

    def disable_group(self, group: str) -> None:
        for name in self.GROUPS.get(group, []):
            self.set_override(name, False)

    # =========================================================================
    # Отчёт
    # =========================================================================

    def get_all_flags(self) -> Dict[str, bool]:
        result = dict(self._flags)
        result.update(self._overrides)
        return result

    def get_enabled_flags(self) -> Set[str]:
        return {name for name, value in self.get_all_flags().items() if value}

    def describe(self) -> Dict[str, Dict[str, Any]]:
        """Значение и источник каждого флага (для scripts/validate_flows.py)"""
        return {
            name: {"enabled": value, "source": self.source_of(name)}
            for name, value in sorted(self.get_all_flags().items())
        }

    # =========================================================================
    # Основные флаги
    # =========================================================================

    @property
    def input_validation(self) -> bool:
        return self.is_enabled("input_validation")

    @property
    def autosave(self) -> bool:
        return self.is_enabled("autosave")

    @property
    def stuck_recovery(self) -> bool:
        return self.is_enabled("stuck_recovery")

    @property
    def allow_skip_required(self) -> bool:
        return self.is_enabled("allow_skip_required")


flags = FeatureFlags()


def feature_flag(flag_name: str, default_return: Any = None) -> Callable:
    """
    Выполнить функцию только при включённом флаге.

    Args:
        flag_name: Имя флага
        default_return: Результат при выключенном флаге

    Example:
        @feature_flag("stuck_recovery", default_return=RecoveryRecommendation.NONE)
        def recovery_recommendation(self, now=None):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            if flags.is_enabled(flag_name):
                return func(*args, **kwargs)
            return default_return
        return wrapper
    return decorator
