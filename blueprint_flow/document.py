"""
DocumentModel: the blueprint being authored.

The document is a two-level mapping ``{document_key: {field: value}}``
whose shape is dictated by the stage graph. A field appears only after
its step received input; re-visiting a step overwrites the value.
"""

import copy
from typing import Any, Dict, List, Optional

from blueprint_flow.errors import MalformedDocumentError
from blueprint_flow.stage_graph import StageGraph

JSON_SCALARS = (str, int, float, bool, type(None))


def is_present(value: Any) -> bool:
    """A value counts as captured unless it is None or blank."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict, tuple)):
        return len(value) > 0
    return True


def _is_json_value(value: Any) -> bool:
    if isinstance(value, JSON_SCALARS):
        return True
    if isinstance(value, list):
        return all(_is_json_value(v) for v in value)
    if isinstance(value, dict):
        return all(isinstance(k, str) and _is_json_value(v) for k, v in value.items())
    return False


class DocumentModel:
    """Nested blueprint document bound to a stage graph."""

    def __init__(self, graph: StageGraph, data: Optional[Dict[str, Dict[str, Any]]] = None):
        self._graph = graph
        self._data: Dict[str, Dict[str, Any]] = copy.deepcopy(data) if data else {}

    @classmethod
    def from_mapping(cls, graph: StageGraph, data: Any) -> "DocumentModel":
        """
        Build a document from an untrusted mapping.

        Raises:
            MalformedDocumentError: the mapping does not fit the graph
        """
        errors = cls.check_mapping(graph, data)
        if errors:
            raise MalformedDocumentError(errors)
        return cls(graph, data)

    @staticmethod
    def check_mapping(graph: StageGraph, data: Any) -> List[str]:
        if not isinstance(data, dict):
            return [f"Document must be a mapping, got {type(data).__name__}"]

        errors = []
        for document_key, section in data.items():
            if graph.stage_for_document_key(document_key) is None:
                errors.append(f"Unknown document section '{document_key}'")
                continue
            if not isinstance(section, dict):
                errors.append(f"Section '{document_key}' must be a mapping")
                continue
            known = graph.known_fields(document_key)
            for field_name, value in section.items():
                if field_name not in known:
                    errors.append(f"Unknown field '{document_key}.{field_name}'")
                elif not _is_json_value(value):
                    errors.append(
                        f"Field '{document_key}.{field_name}' holds a non-serializable "
                        f"{type(value).__name__}"
                    )
        return errors

    @property
    def graph(self) -> StageGraph:
        return self._graph

    def write(self, path: str, value: Any) -> bool:
        """
        Store a value at a dotted path.

        Returns:
            True if the document changed, False for an identical rewrite
        """
        document_key, field_name = self._graph.resolve_path(path)
        section = self._data.get(document_key)
        if section is not None and field_name in section and section[field_name] == value:
            return False
        self._data.setdefault(document_key, {})[field_name] = copy.deepcopy(value)
        return True

    def read(self, path: str, default: Any = None) -> Any:
        document_key, field_name = self._graph.resolve_path(path)
        return copy.deepcopy(self._data.get(document_key, {}).get(field_name, default))

    def has(self, path: str) -> bool:
        document_key, field_name = self._graph.resolve_path(path)
        return is_present(self._data.get(document_key, {}).get(field_name))

    def is_stage_satisfied(self, stage_id: str) -> bool:
        """Every required collect step of the stage holds a value."""
        if self._graph.is_terminal(stage_id):
            return True
        return all(self.has(path) for path in self._graph.required_paths(stage_id))

    def missing_required(self, stage_id: str) -> List[str]:
        return [p for p in self._graph.required_paths(stage_id) if not self.has(p)]

    def satisfied_stages(self) -> List[str]:
        return [s for s in self._graph.stage_ids if self.is_stage_satisfied(s)]

    def clear(self) -> None:
        self._data = {}

    @property
    def is_empty(self) -> bool:
        return not any(self._data.values())

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Deep copy safe to hand to callers or serializers."""
        return copy.deepcopy(self._data)

    def copy(self) -> "DocumentModel":
        return DocumentModel(self._graph, self._data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DocumentModel):
            return NotImplemented
        return self._data == other._data

    def __repr__(self) -> str:
        filled = sum(len(section) for section in self._data.values())
        return f"DocumentModel(graph={self._graph.name!r}, fields={filled})"
