from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Sequence

from ..domain.drafts import ProjectDraft, TaskDraft


@dataclass(frozen=True)
class Completeness:
    is_complete: bool
    missing: List[str] = field(default_factory=list)


def _present(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip() != ""
    return bool(value)


def check_project_draft(draft: ProjectDraft, workspaces: Sequence[Any]) -> Completeness:
    """Workspace is only demanded when the tenant has at least one."""

    missing: List[str] = []
    if not _present(draft.name):
        missing.append("project name")
    if not _present(draft.deadline):
        missing.append("deadline")
    has_workspace = _present(draft.workspace_id) or _present(draft.workspace_name)
    if workspaces and not has_workspace:
        missing.append("workspace")
    return Completeness(is_complete=not missing, missing=missing)


def check_task_draft(draft: TaskDraft, projects: Sequence[Any]) -> Completeness:
    missing: List[str] = []
    has_project = _present(draft.project_id) or _present(draft.project_name)
    if projects and not has_project:
        missing.append("project")
    if not _present(draft.title):
        missing.append("task title")
    return Completeness(is_complete=not missing, missing=missing)
