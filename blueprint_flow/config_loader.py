"""
Configuration Loader for stage graphs.

This module loads and validates the YAML flow definitions under
``yaml_config/flows/`` and turns them into immutable ``StageGraph``
objects.

Flow file layout:

    graph:
      name: sop
      version: "1.0"
      terminal_stage: COMPLETED
    stages:
      - id: IDEATION
        document_key: ideation
        steps:
          - id: IDEATION_BIG_IDEA
            kind: collect
            path: bigIdea
            required: true
            validation: {min_length: 3}
"""

from pathlib import Path
from typing import Dict, Any, Optional, List
import yaml
import logging

from blueprint_flow.errors import GraphConfigurationError
from blueprint_flow.settings import settings
from blueprint_flow.stage_graph import (
    DEFAULT_TERMINAL_STAGE,
    StageConfig,
    StageGraph,
    StepConfig,
    StepKind,
    validate_stage_definitions,
)

logger = logging.getLogger(__name__)

VALIDATION_KEYS = {"min_length", "max_length", "pattern", "message"}


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        message = f"Configuration validation failed with {len(errors)} error(s):\n"
        message += "\n".join(f"  - {e}" for e in errors)
        super().__init__(message)


class ConfigLoadError(Exception):
    """Raised when configuration file loading fails."""

    def __init__(self, file_path: str, reason: str):
        self.file_path = file_path
        self.reason = reason
        message = f"Failed to load '{file_path}': {reason}"
        super().__init__(message)


class ConfigLoader:
    """
    Loads and validates flow definitions.

    Provides:
    - Loading of flows from yaml_config/flows/{name}.yaml
    - Structural validation with all problems reported at once
    - Construction of immutable StageGraph objects
    """

    def __init__(self, config_dir: Optional[Path] = None):
        """
        Initialize config loader.

        Args:
            config_dir: Path to config directory (defaults to blueprint_flow/yaml_config/)
        """
        if config_dir is None:
            config_dir = settings.get_nested("flow.config_dir") or Path(__file__).parent / "yaml_config"
        self.config_dir = Path(config_dir)

    def available_graphs(self) -> List[str]:
        """Names of flow files present in flows/."""
        flows_dir = self.config_dir / "flows"
        if not flows_dir.is_dir():
            return []
        return sorted(p.stem for p in flows_dir.glob("*.yaml"))

    def load_graph(self, name: str, validate: bool = True) -> StageGraph:
        """
        Load a stage graph by name.

        Args:
            name: Name of the flow (e.g., "sop", "pbl")
            validate: Whether to run structural validation before building

        Returns:
            StageGraph

        Raises:
            ConfigLoadError: If the flow file cannot be loaded
            ConfigValidationError: If validation fails
        """
        data = self._load_yaml(f"flows/{name}.yaml", required=True)
        meta = data.get("graph") or {}
        raw_stages = data.get("stages")

        errors: List[str] = []
        if validate:
            errors.extend(self._validate_raw(raw_stages))
        if errors:
            raise ConfigValidationError(errors)

        stages = [self._parse_stage(raw) for raw in raw_stages or []]
        terminal = meta.get("terminal_stage", DEFAULT_TERMINAL_STAGE)

        if validate:
            errors.extend(validate_stage_definitions(stages, terminal))
            if errors:
                raise ConfigValidationError(errors)

        try:
            graph = StageGraph(
                stages,
                terminal_stage=terminal,
                name=meta.get("name", name),
                version=str(meta.get("version", "1.0")),
                description=meta.get("description", ""),
            )
        except GraphConfigurationError as e:
            raise ConfigValidationError(e.errors) from e

        logger.debug(
            f"Loaded graph '{graph.name}' v{graph.version}: "
            f"{graph.total_stages} stages, {graph.total_steps} steps"
        )
        return graph

    def _load_yaml(
        self,
        relative_path: str,
        required: bool = True
    ) -> Dict[str, Any]:
        """
        Load a YAML file.

        Args:
            relative_path: Path relative to config_dir
            required: Whether file is required to exist

        Returns:
            Parsed YAML as dict (empty dict if not required and missing)

        Raises:
            ConfigLoadError: If required file is missing or parsing fails
        """
        file_path = self.config_dir / relative_path

        if not file_path.exists():
            if required:
                raise ConfigLoadError(
                    str(file_path),
                    "File not found"
                )
            return {}

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigLoadError(str(file_path), f"YAML parse error: {e}")
        except OSError as e:
            raise ConfigLoadError(str(file_path), str(e))

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigLoadError(str(file_path), "Top-level YAML value must be a mapping")
        return data

    def _validate_raw(self, raw_stages: Any) -> List[str]:
        """
        Validate the raw YAML structure before building dataclasses.

        Validates:
        1. stages is a non-empty list of mappings with ids
        2. every step has an id and a known kind
        3. validation blocks only use known keys
        """
        errors = []
        if not isinstance(raw_stages, list) or not raw_stages:
            return ["'stages' must be a non-empty list"]

        for i, stage in enumerate(raw_stages):
            if not isinstance(stage, dict) or not stage.get("id"):
                errors.append(f"Stage #{i + 1} must be a mapping with an 'id'")
                continue
            steps = stage.get("steps")
            if not isinstance(steps, list) or not steps:
                errors.append(f"Stage '{stage['id']}' must declare a non-empty 'steps' list")
                continue
            for j, step in enumerate(steps):
                if not isinstance(step, dict) or not step.get("id"):
                    errors.append(f"Step #{j + 1} of stage '{stage['id']}' must be a mapping with an 'id'")
                    continue
                kind = step.get("kind", StepKind.COLLECT.value)
                if kind not in StepKind.values():
                    errors.append(
                        f"Step '{stage['id']}.{step['id']}' has unknown kind '{kind}' "
                        f"(expected one of {', '.join(StepKind.values())})"
                    )
                rules = step.get("validation") or {}
                if not isinstance(rules, dict):
                    errors.append(f"Step '{stage['id']}.{step['id']}' validation must be a mapping")
                else:
                    unknown = set(rules) - VALIDATION_KEYS
                    if unknown:
                        errors.append(
                            f"Step '{stage['id']}.{step['id']}' has unknown validation keys: "
                            f"{', '.join(sorted(unknown))}"
                        )
        return errors

    def _parse_stage(self, raw: Dict[str, Any]) -> StageConfig:
        return StageConfig(
            id=raw["id"],
            document_key=raw.get("document_key") or str(raw["id"]).lower(),
            title=raw.get("title", ""),
            steps=tuple(self._parse_step(s) for s in raw.get("steps") or []),
        )

    def _parse_step(self, raw: Dict[str, Any]) -> StepConfig:
        kind = StepKind(raw.get("kind", StepKind.COLLECT.value))
        # Only collect steps are required unless the file says otherwise
        required = raw.get("required", kind == StepKind.COLLECT)
        return StepConfig(
            id=raw["id"],
            kind=kind,
            document_path=raw.get("path"),
            required=bool(required),
            prompt=raw.get("prompt", ""),
            suggestions=tuple(raw.get("suggestions") or ()),
            validation=dict(raw.get("validation") or {}),
        )

    def __repr__(self) -> str:
        return f"ConfigLoader(config_dir={self.config_dir})"


# Graphs are immutable, so one instance per name is shared process-wide
_graph_cache: Dict[str, StageGraph] = {}
_config_loader: Optional[ConfigLoader] = None


def get_graph(name: Optional[str] = None, reload: bool = False) -> StageGraph:
    """
    Get a stage graph by name (defaults to ``flow.active`` from settings).

    Args:
        name: Flow name
        reload: Force reload from files

    Returns:
        StageGraph instance
    """
    global _config_loader

    name = name or settings.get_nested("flow.active", "sop")
    if _config_loader is None:
        _config_loader = ConfigLoader()

    if reload or name not in _graph_cache:
        _graph_cache[name] = _config_loader.load_graph(name)

    return _graph_cache[name]
