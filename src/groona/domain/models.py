from __future__ import annotations

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class Workspace(BaseModel):
    id: str
    tenant_id: str
    name: str
    is_default: bool = False


class TeamMember(BaseModel):
    email: str
    role: str = "member"


class Project(BaseModel):
    id: str
    tenant_id: str
    name: str
    description: str = ""
    workspace_id: Optional[str] = None
    deadline: Optional[str] = None
    owner: Optional[str] = None
    status: str = "planning"
    priority: str = "medium"
    progress: int = 0
    team_members: List[TeamMember] = Field(default_factory=list)
    created_at: Optional[str] = None


class Sprint(BaseModel):
    id: str
    tenant_id: str
    project_id: str
    name: str


class TenantUser(BaseModel):
    id: str
    tenant_id: str
    full_name: str
    email: str


class Task(BaseModel):
    id: str
    tenant_id: str
    title: str
    description: str = ""
    project_id: str
    workspace_id: Optional[str] = None
    sprint_id: Optional[str] = None
    reporter: Optional[str] = None
    assigned_to: List[str] = Field(default_factory=list)
    due_date: Optional[str] = None
    estimated_hours: float = 0
    story_points: int = 0
    priority: str = "medium"
    status: str = "todo"
    task_type: str = "task"
    ai_generated: bool = False
    ai_metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None


class RoleAssignment(BaseModel):
    id: str
    tenant_id: str
    user_id: str
    project_id: str
    role: str = "project_manager"


class Activity(BaseModel):
    id: str
    tenant_id: str
    action: str
    entity_type: str
    entity_id: str
    entity_name: str
    project_id: Optional[str] = None
    user_email: Optional[str] = None
    details: str = ""
    created_at: Optional[str] = None


class TokenUsage(BaseModel):
    tenant_id: str
    user_id: str
    model: str
    total_tokens: int
    created_at: Optional[str] = None


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class CreateProjectRequest(BaseModel):
    project_name: Optional[str] = None
    workspace_name: Optional[str] = None
    workspace_id: Optional[str] = None
    deadline: Optional[str] = None
    description: Optional[str] = None
    team_members: List[str] = Field(default_factory=list, description="Emails of members to invite")
    tenant_id: str
    user_id: str
    user_email: str


class CreateTaskRequest(BaseModel):
    title: Optional[str] = None
    project_name: Optional[str] = None
    project_id: Optional[str] = None
    sprint_name: Optional[str] = None
    assignee_name: Optional[str] = None
    assignee_email: Optional[str] = None
    due_date: Optional[str] = None
    estimated_hours: Optional[Any] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    tenant_id: str
    user_id: str
    user_email: str
