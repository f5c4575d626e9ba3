"""Workflow documents: JSON files validated into WorkflowConfig."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List

from ..models import WorkflowConfig

BUILTIN_DIR = Path(__file__).parent


def load_workflow(path: str | Path) -> WorkflowConfig:
    """Read and validate a workflow document; raises pydantic.ValidationError on bad configs."""
    path = Path(path)
    with path.open("r", encoding="utf-8") as handle:
        raw = json.load(handle)
    workflow = WorkflowConfig.model_validate(raw)
    logging.debug("load_workflow: path=%s name=%s steps=%s", path, workflow.name, len(workflow.steps))
    return workflow


def list_builtin_workflows() -> List[str]:
    return sorted(path.stem for path in BUILTIN_DIR.glob("*.json"))


def get_builtin_workflow(name: str) -> WorkflowConfig:
    path = BUILTIN_DIR / f"{name}.json"
    if not path.is_file():
        raise KeyError(f"Unknown workflow {name!r}; available: {', '.join(list_builtin_workflows())}")
    return load_workflow(path)


def builtin_workflows() -> Dict[str, WorkflowConfig]:
    return {name: get_builtin_workflow(name) for name in list_builtin_workflows()}


def truncate_workflow(config: WorkflowConfig, count: int) -> WorkflowConfig:
    """The first `count` steps of `config`, for trying a workflow out piece by piece."""
    if count < 1:
        raise ValueError("count must be at least 1")
    return config.model_copy(
        update={"name": f"{config.name} (first {count} steps)", "steps": config.steps[:count]}
    )


def workflow_from_step(config: WorkflowConfig, ordinal: int) -> WorkflowConfig:
    """Resume `config` at `ordinal`; the remaining steps are renumbered from 1."""
    remaining = [step for step in config.steps if step.ordinal >= ordinal]
    if not remaining:
        raise ValueError(f"{config.name!r} has no step {ordinal}")
    steps = [step.model_copy(update={"ordinal": index}) for index, step in enumerate(remaining, start=1)]
    # Rebuilt through validation so the ordinal check runs on the new list.
    return WorkflowConfig.model_validate(
        {
            "name": f"{config.name} (from step {ordinal})",
            "version": config.version,
            "description": config.description,
            "steps": [step.model_dump() for step in steps],
        }
    )
