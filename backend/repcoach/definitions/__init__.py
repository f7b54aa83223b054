"""
Exercise definition loading.

Definitions are JSON documents validated into ``ExerciseDefinition``
models. A catalog ships with the package under ``data/``; hosts can add
their own through ``Settings.definitions_dir``. Any structural error is
raised as ``DefinitionError`` at load time, before a session can start.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from repcoach.config import Settings, get_settings
from repcoach.schemas.exercise import DefinitionError, ExerciseDefinition

logger = logging.getLogger(__name__)

BUILTIN_DIR = Path(__file__).parent / "data"


def load_definition(data: Mapping[str, Any]) -> ExerciseDefinition:
    """
    Validate a definition document.

    Raises:
        DefinitionError: if the document is malformed (unknown joint,
            dangling or unreachable stage, bad thresholds, ...)
    """
    try:
        return ExerciseDefinition.model_validate(data)
    except ValidationError as e:
        definition_id = data.get("id", "<unnamed>") if isinstance(data, Mapping) else "<invalid>"
        raise DefinitionError(f"Invalid exercise definition '{definition_id}': {e}") from e


def load_definition_file(path: Union[str, Path]) -> ExerciseDefinition:
    """Load and validate a definition from a JSON file."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise DefinitionError(f"Cannot read exercise definition {path}: {e}") from e
    return load_definition(data)


class DefinitionRegistry:
    """Exercise definitions by id."""

    def __init__(self, definitions: Optional[Iterable[ExerciseDefinition]] = None):
        self._definitions: Dict[str, ExerciseDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    @classmethod
    def from_directory(cls, directory: Union[str, Path]) -> "DefinitionRegistry":
        registry = cls()
        registry.load_directory(directory)
        return registry

    @classmethod
    def default(cls, settings: Optional[Settings] = None) -> "DefinitionRegistry":
        """Bundled catalog plus the configured extra directory, if any."""
        settings = settings or get_settings()
        registry = cls.from_directory(BUILTIN_DIR)
        if settings.definitions_dir:
            registry.load_directory(settings.definitions_dir)
        return registry

    def register(self, definition: ExerciseDefinition, replace: bool = False):
        if definition.id in self._definitions and not replace:
            raise DefinitionError(f"Duplicate exercise definition id '{definition.id}'")
        self._definitions[definition.id] = definition

    def load_directory(self, directory: Union[str, Path]) -> List[str]:
        """Load every ``*.json`` in ``directory``; later files replace earlier ids."""
        directory = Path(directory)
        if not directory.is_dir():
            raise DefinitionError(f"Definitions directory not found: {directory}")

        loaded = []
        for path in sorted(directory.glob("*.json")):
            definition = load_definition_file(path)
            self.register(definition, replace=True)
            loaded.append(definition.id)
        logger.info(f"Loaded {len(loaded)} exercise definitions from {directory}")
        return loaded

    def get(self, definition_id: str) -> ExerciseDefinition:
        try:
            return self._definitions[definition_id]
        except KeyError:
            raise DefinitionError(f"Unknown exercise '{definition_id}'") from None

    def ids(self) -> List[str]:
        return sorted(self._definitions)

    def __contains__(self, definition_id: str) -> bool:
        return definition_id in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)
