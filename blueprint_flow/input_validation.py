"""
Shallow validation of submitted answers.

Each step may declare rules in its ``validation`` block:

    validation:
      min_length: 20
      max_length: 2000
      pattern: "^[0-9]+$"
      message: "Please provide more detail about your learning goals"

Rules are heuristics that catch obviously unusable answers; they do
not try to judge content. A global ``validation.max_input_length``
setting caps every answer.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from blueprint_flow.settings import settings
from blueprint_flow.stage_graph import StepConfig


DEFAULT_MESSAGES = {
    "min_length": "Please provide a little more detail (at least {value} characters).",
    "max_length": "Please keep this answer under {value} characters.",
    "pattern": "That answer doesn't look like the expected format.",
}


@dataclass
class ValidationResult:
    """Outcome of checking one answer."""
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.is_valid = False
        if message not in self.errors:
            self.errors.append(message)


class InputValidator:
    """Applies a step's validation rules to trimmed input text."""

    def __init__(self, max_input_length: Optional[int] = None):
        if max_input_length is None:
            max_input_length = settings.get_nested("validation.max_input_length", 5000)
        self.max_input_length = max_input_length
        self._pattern_cache = {}

    def validate(self, step: StepConfig, text: str) -> ValidationResult:
        result = ValidationResult()
        rules = step.validation or {}
        custom_message = rules.get("message")

        min_length = rules.get("min_length")
        if min_length is not None and len(text) < min_length:
            result.add_error(custom_message or DEFAULT_MESSAGES["min_length"].format(value=min_length))

        max_length = rules.get("max_length")
        if max_length is not None and len(text) > max_length:
            result.add_error(custom_message or DEFAULT_MESSAGES["max_length"].format(value=max_length))
        elif self.max_input_length and len(text) > self.max_input_length:
            result.add_error(DEFAULT_MESSAGES["max_length"].format(value=self.max_input_length))

        pattern = rules.get("pattern")
        if pattern is not None and not self._compile(pattern).search(text):
            result.add_error(custom_message or DEFAULT_MESSAGES["pattern"])

        return result

    def _compile(self, pattern: str) -> "re.Pattern":
        compiled = self._pattern_cache.get(pattern)
        if compiled is None:
            compiled = re.compile(pattern)
            self._pattern_cache[pattern] = compiled
        return compiled
