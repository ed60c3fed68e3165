from __future__ import annotations

from typing import Any, Dict, List, Optional, Literal
from pydantic import BaseModel, Field


Role = Literal["user", "assistant"]


class ConversationMessage(BaseModel):
    role: Role
    content: str
    created_at: str
    file_urls: List[str] = Field(default_factory=list)
    action: Optional[Dict[str, Any]] = None


class Conversation(BaseModel):
    conversation_id: str
    tenant_id: str
    user_id: str
    title: str
    assistant_type: str = "groona"
    is_active: bool = True
    created_at: str
    updated_at: str
    messages: List[ConversationMessage] = Field(default_factory=list)


class ConversationCreate(BaseModel):
    tenant_id: str
    user_id: str
    title: Optional[str] = None


class ChatRequest(BaseModel):
    conversation_id: str
    content: str = Field(min_length=1)
    tenant_id: str
    user_id: str
    file_urls: List[str] = Field(default_factory=list)
    context: Optional[str] = None
    model: Optional[str] = None
    provider: Literal["gemini", "openrouter"] = "gemini"


class ChatModelOption(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    context_length: Optional[int] = None
    provider: str
    is_live: bool = False
