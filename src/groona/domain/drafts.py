"""Unpersisted Project/Task candidates built up from a conversation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Union


@dataclass(frozen=True)
class AssigneeByName:
    name: str


@dataclass(frozen=True)
class AssigneeByEmail:
    email: str


Assignee = Union[AssigneeByName, AssigneeByEmail]


@dataclass
class ProjectDraft:
    name: Optional[str] = None
    description: Optional[str] = None
    deadline: Optional[str] = None
    workspace_id: Optional[str] = None
    workspace_name: Optional[str] = None
    team_members: List[str] = field(default_factory=list)
    priority: str = "medium"
    status: str = "planning"


@dataclass
class TaskDraft:
    title: Optional[str] = None
    description: Optional[str] = None
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    sprint_id: Optional[str] = None
    sprint_name: Optional[str] = None
    assignee: Optional[Assignee] = None
    due_date: Optional[str] = None
    estimated_hours: Optional[float] = None
    priority: str = "medium"
    status: str = "todo"
    task_type: str = "task"

    @property
    def assignee_name(self) -> Optional[str]:
        return self.assignee.name if isinstance(self.assignee, AssigneeByName) else None

    @property
    def assignee_email(self) -> Optional[str]:
        return self.assignee.email if isinstance(self.assignee, AssigneeByEmail) else None


def assignee_from_fields(name: Optional[str], email: Optional[str]) -> Optional[Assignee]:
    """Build the assignee variant from loose request fields; a name wins over an email."""
    if name and name.strip():
        return AssigneeByName(name.strip())
    if email and email.strip():
        return AssigneeByEmail(email.strip())
    return None
