#!/usr/bin/env python3
"""
Валидация settings.yaml и всех графов из yaml_config/flows.

Запуск: python3 scripts/validate_flows.py
"""

import sys
from pathlib import Path

# Корень репозитория в путь (для запуска без pip install -e .)
sys.path.insert(0, str(Path(__file__).parent.parent))

from blueprint_flow.settings import load_settings, validate_settings, DEFAULTS


def compare_with_defaults(settings, defaults, path=""):
    """Сравнить настройки с defaults, показать что переопределено"""
    overrides = []

    for key, default_value in defaults.items():
        current_path = f"{path}.{key}" if path else key

        if isinstance(default_value, dict):
            if key in settings:
                overrides.extend(compare_with_defaults(settings[key], default_value, current_path))
        else:
            if key in settings and settings[key] != default_value:
                overrides.append((current_path, default_value, settings[key]))

    return overrides


def check_graphs():
    """Загрузить каждый граф и показать его структуру"""
    print("\n1. Загрузка графов...")

    from blueprint_flow.config_loader import ConfigLoader, ConfigLoadError, ConfigValidationError

    loader = ConfigLoader()
    names = loader.available_graphs()
    if not names:
        print(f"   [-] В {loader.config_dir / 'flows'} нет ни одного графа")
        return False

    all_ok = True
    for name in names:
        try:
            graph = loader.load_graph(name)
        except (ConfigLoadError, ConfigValidationError) as e:
            print(f"   [-] {name}: {e}")
            all_ok = False
            continue
        print(f"   [+] {name} v{graph.version}: {graph.total_stages} стадий, {graph.total_steps} шагов")
        for stage in graph.stages:
            required = len(graph.required_paths(stage.id))
            print(f"       {stage.id:<24} {len(stage.steps)} шагов, обязательных: {required}")

    return all_ok


def check_walkthrough():
    """Пройти каждый граф до конца через skip (без записи на диск)"""
    print("\n2. Сквозной проход по графам...")

    from blueprint_flow.config_loader import ConfigLoader
    from blueprint_flow.orchestrator import FlowOrchestrator

    loader = ConfigLoader()
    all_ok = True
    for name in loader.available_graphs():
        try:
            graph = loader.load_graph(name)
        except Exception as e:
            print(f"   [-] {name}: {e}")
            all_ok = False
            continue

        flow = FlowOrchestrator(graph, session_id=f"validate-{name}", skip_override=True)
        for _ in range(graph.total_steps):
            result = flow.dispatch_action("skip")
            if not result.allowed:
                print(f"   [-] {name}: skip отклонён ({result.reason}) на {result.from_position}")
                all_ok = False
                break

        if flow.is_terminal:
            print(f"   [+] {name}: дошли до {graph.terminal_stage}")
        elif all_ok:
            print(f"   [-] {name}: не дошли до {graph.terminal_stage}")
            all_ok = False

    return all_ok


def main():
    print("=" * 60)
    print("ВАЛИДАЦИЯ SETTINGS.YAML И ГРАФОВ")
    print("=" * 60)

    # Загрузка и базовая валидация
    print("\n0. Загрузка настроек...")
    settings = load_settings()
    errors = validate_settings(settings)

    if errors:
        print("   [-] Найдены ошибки:")
        for err in errors:
            print(f"      - {err}")
        sys.exit(1)
    else:
        print("   [+] Базовая валидация пройдена")

    # Показать что переопределено
    overrides = compare_with_defaults(dict(settings), DEFAULTS)
    if overrides:
        print("\n   Переопределённые значения:")
        for path, default, current in overrides:
            print(f"      {path}: {default} -> {current}")

    from blueprint_flow.feature_flags import flags

    print("\n   Feature flags:")
    for name, info in flags.describe().items():
        state = "ON" if info["enabled"] else "OFF"
        print(f"      {name:<22} {state:<4} ({info['source']})")

    results = []
    results.append(("Графы", check_graphs()))
    results.append(("Сквозной проход", check_walkthrough()))

    # Итоги
    print("\n" + "=" * 60)
    print("ИТОГИ")
    print("=" * 60)

    all_passed = True
    for name, passed in results:
        status = "[+]" if passed else "[-]"
        print(f"   {status} {name}")
        if not passed:
            all_passed = False

    if all_passed:
        print("\n[+] ВСЕ ПРОВЕРКИ ПРОЙДЕНЫ")
        return 0
    else:
        print("\n[-] ЕСТЬ ОШИБКИ")
        return 1


if __name__ == "__main__":
    sys.exit(main())
