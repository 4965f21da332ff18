"""Data models and schemas for the K2 proxy."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict


class Message(BaseModel):
    """Chat message model."""
    model_config = ConfigDict(extra="allow")

    role: str
    content: Any = None
    name: Optional[str] = None


class ChatCompletionRequest(BaseModel):
    """Request model for chat completions; unknown OpenAI fields are accepted and ignored."""
    model_config = ConfigDict(extra="allow")

    model: Optional[str] = None
    messages: List[Message] = []
    stream: Optional[bool] = False


class Choice(BaseModel):
    """Choice model for chat completions."""
    index: int
    message: Message
    finish_reason: Optional[str] = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResponse(BaseModel):
    """Response model for chat completions."""
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[Choice]
    usage: Usage


class ModelCard(BaseModel):
    id: str
    object: str = "model"
    created: int
    owned_by: str


class ModelList(BaseModel):
    object: str = "list"
    data: List[ModelCard]
