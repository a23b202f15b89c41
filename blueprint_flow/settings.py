"""
Загрузчик настроек из settings.yaml

Использование:
    from blueprint_flow.settings import settings

    active_flow = settings.flow.active
    ttl = settings.get_nested("session.ttl_seconds", 3600)
"""

import copy
import os
from pathlib import Path
from typing import Any, List, Optional

import yaml


# Встроенный файл настроек; BLUEPRINT_SETTINGS_FILE указывает на другой
SETTINGS_FILE = Path(__file__).parent / "settings.yaml"
SETTINGS_ENV_VAR = "BLUEPRINT_SETTINGS_FILE"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
PERSISTENCE_BACKENDS = ("memory", "sqlite")

# Значения по умолчанию (используются если параметр не указан в YAML)
DEFAULTS = {
    "logging": {
        "level": "INFO",
        "log_document_values": False,
    },
    "flow": {
        "active": "sop",           # Граф по умолчанию (sop | sop_wizard | pbl)
        "config_dir": None,        # None = blueprint_flow/yaml_config
    },
    "validation": {
        "max_input_length": 5000,
    },
    "stuck_recovery": {
        "profile": "default",
        "profiles": {
            "default": {
                "empty_input_threshold": 2,
                "invalid_input_threshold": 3,
                "idle_threshold_ms": 120000,
                "restart_threshold": 6,
            },
            "new_user": {
                "empty_input_threshold": 2,
                "invalid_input_threshold": 2,
                "idle_threshold_ms": 60000,
                "restart_threshold": 5,
            },
            "expert": {
                "empty_input_threshold": 3,
                "invalid_input_threshold": 5,
                "idle_threshold_ms": 180000,
                "restart_threshold": 8,
            },
        },
    },
    "session": {
        "ttl_seconds": 3600,
    },
    "persistence": {
        "backend": "memory",
        "db_path": "blueprint_sessions.sqlite",
    },
}


class DotDict(dict):
    """Словарь с доступом через точку: d.key вместо d['key']"""

    def __getattr__(self, key: str) -> Any:
        try:
            value = self[key]
            if isinstance(value, dict):
                return DotDict(value)
            return value
        except KeyError:
            raise AttributeError(f"Настройка '{key}' не найдена")

    def __setattr__(self, key: str, value: Any) -> None:
        self[key] = value

    def get_nested(self, path: str, default: Any = None) -> Any:
        """Получить значение по пути: 'session.ttl_seconds'"""
        keys = path.split('.')
        value = self
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value


def _deep_merge(base: dict, override: dict) -> dict:
    """Глубокое слияние словарей; base не изменяется"""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def settings_path() -> Path:
    """Файл настроек с учётом BLUEPRINT_SETTINGS_FILE"""
    override = os.environ.get(SETTINGS_ENV_VAR)
    return Path(override) if override else SETTINGS_FILE


def load_settings(filepath: Optional[Path] = None) -> DotDict:
    """
    Загрузить настройки: DEFAULTS, поверх них YAML.

    Args:
        filepath: Путь к файлу настроек (по умолчанию settings_path())

    Returns:
        DotDict с настройками
    """
    filepath = Path(filepath) if filepath else settings_path()

    if not filepath.exists():
        print(f"[settings] Файл настроек не найден: {filepath}, используются DEFAULTS")
        return DotDict(copy.deepcopy(DEFAULTS))

    with open(filepath, "r", encoding="utf-8") as f:
        yaml_config = yaml.safe_load(f) or {}
    if not isinstance(yaml_config, dict):
        print(f"[settings] {filepath}: ожидался словарь верхнего уровня, используются DEFAULTS")
        return DotDict(copy.deepcopy(DEFAULTS))

    return DotDict(_deep_merge(DEFAULTS, yaml_config))


def _check_positive_int(settings: DotDict, path: str, errors: List[str]) -> None:
    value = settings.get_nested(path)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        errors.append(f"{path} должен быть целым числом > 0")


def validate_settings(settings: DotDict) -> List[str]:
    """
    Проверить настройки.

    Returns:
        Список ошибок (пустой если всё OK)
    """
    errors = []

    level = str(settings.get_nested("logging.level", "")).upper()
    if level not in LOG_LEVELS:
        errors.append(f"logging.level должен быть одним из {', '.join(LOG_LEVELS)}")

    if not settings.get_nested("flow.active"):
        errors.append("flow.active не указан")

    _check_positive_int(settings, "validation.max_input_length", errors)
    _check_positive_int(settings, "session.ttl_seconds", errors)

    profiles = settings.get_nested("stuck_recovery.profiles", {}) or {}
    profile = settings.get_nested("stuck_recovery.profile")
    if profile not in profiles:
        errors.append(f"stuck_recovery.profile '{profile}' отсутствует в stuck_recovery.profiles")
    for name in profiles:
        for key in ("empty_input_threshold", "invalid_input_threshold",
                    "idle_threshold_ms", "restart_threshold"):
            _check_positive_int(settings, f"stuck_recovery.profiles.{name}.{key}", errors)

    backend = settings.get_nested("persistence.backend")
    if backend not in PERSISTENCE_BACKENDS:
        errors.append(f"persistence.backend должен быть одним из {', '.join(PERSISTENCE_BACKENDS)}")
    elif backend == "sqlite" and not settings.get_nested("persistence.db_path"):
        errors.append("persistence.db_path не указан для backend=sqlite")

    flag_values = settings.get_nested("feature_flags", {}) or {}
    if not isinstance(flag_values, dict):
        errors.append("feature_flags должен быть словарём")
    else:
        for name, value in flag_values.items():
            if not isinstance(value, bool):
                errors.append(f"feature_flags.{name} должен быть true/false")

    return errors


# Глобальный экземпляр настроек (ленивая загрузка)
_settings = None


def get_settings() -> DotDict:
    """Получить глобальные настройки (singleton)"""
    global _settings
    if _settings is None:
        _settings = load_settings()
        errors = validate_settings(_settings)
        if errors:
            print("[settings] Ошибки в настройках:")
            for err in errors:
                print(f"  - {err}")
    return _settings


def reload_settings() -> DotDict:
    """Перезагрузить настройки из файла"""
    global _settings
    _settings = None
    return get_settings()


# Для удобного импорта: from blueprint_flow.settings import settings
settings = get_settings()

