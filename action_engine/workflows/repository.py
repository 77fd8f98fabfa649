import json
import logging
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, Tuple

from action_engine.vars import LOGGER_NAME, WORKFLOWS_PATH
from action_engine.workflows.catalog import BUILTIN_WORKFLOWS
from action_engine.workflows.models import WorkflowDefinition

logger = logging.getLogger(LOGGER_NAME)


class WorkflowRepository:
    """
    Read-only snapshot of the workflow catalog.

    Built once at startup (from the built-in catalog or a directory of JSON
    definitions) and shared by every turn. Refreshing means building a new
    repository and swapping the reference.
    """

    def __init__(self, definitions: Iterable[WorkflowDefinition]):
        ordered: Dict[str, WorkflowDefinition] = {}
        for definition in definitions:
            if definition.name in ordered:
                raise ValueError(f"Duplicate workflow name '{definition.name}'")
            ordered[definition.name] = definition
        self._definitions: Tuple[WorkflowDefinition, ...] = tuple(ordered.values())
        self._by_name = dict(ordered)

    @classmethod
    def default(cls) -> "WorkflowRepository":
        return cls(BUILTIN_WORKFLOWS)

    @classmethod
    def from_path(cls, workflows_path: str) -> "WorkflowRepository":
        """Load every ``*.json`` workflow definition in a directory."""
        path_obj = Path(workflows_path)
        if not path_obj.exists() or not path_obj.is_dir():
            raise ValueError(
                f"Workflow path '{workflows_path}' does not exist or is not a directory."
            )
        definitions = []
        for file in sorted(path_obj.glob("*.json")):
            try:
                payload = json.loads(file.read_text(encoding="utf-8"))
                if not isinstance(payload, dict):
                    logger.warning(
                        f"[WorkflowRepository] Workflow file {file} must contain a JSON object"
                    )
                    continue
                if not payload.get("name") or not payload.get("triggers"):
                    logger.debug(
                        f"[WorkflowRepository] Skipping incomplete workflow file {file}"
                    )
                    continue
                definitions.append(WorkflowDefinition.from_dict(payload))
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning(
                    f"[WorkflowRepository] Failed to load workflow from {file}: {exc}"
                )
        logger.info(
            f"[WorkflowRepository] Loaded {len(definitions)} workflows from {path_obj}"
        )
        return cls(definitions)

    @classmethod
    def from_environment(cls) -> "WorkflowRepository":
        if WORKFLOWS_PATH:
            return cls.from_path(WORKFLOWS_PATH)
        return cls.default()

    def get(self, name: str) -> Optional[WorkflowDefinition]:
        return self._by_name.get(name)

    def __iter__(self) -> Iterator[WorkflowDefinition]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)
