from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """Single history entry recorded for a conversation."""
    role: str
    content: str
    timestamp: float = Field(default_factory=time.time)


class ConversationState(BaseModel):
    """Per-conversation dialog state tracked across turns."""
    conversation_history: List[ChatMessage] = Field(default_factory=list)
    preferences: Dict[str, Any] = Field(default_factory=dict)
    last_intent: Optional[str] = None
    last_message: Optional[str] = None
    message_count: int = 0
    stage: str = "greeting"
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


class IntentResult(BaseModel):
    """Classified intent for one message; degraded marks the fallback result."""
    intent: str
    confidence: float = Field(ge=0.0, le=1.0)
    degraded: bool = False


class ProductRecommendation(BaseModel):
    """Product suggestion returned by the recommender; unknown keys are kept."""
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Any] = None
    url: Optional[str] = None


class RecommendationResult(BaseModel):
    products: List[ProductRecommendation] = Field(default_factory=list)
    degraded: bool = False


class Action(BaseModel):
    """Side-effect instruction returned with a reply, e.g. render product cards."""
    type: str
    products: List[ProductRecommendation] = Field(default_factory=list)


class HandlerReply(BaseModel):
    response: str
    actions: List[Action] = Field(default_factory=list)


class ChatTurn(BaseModel):
    """Orchestrator output for one inbound message."""
    response: str
    actions: List[Action] = Field(default_factory=list)


class BotConfig(BaseModel):
    """Assistant persona and offer settings used to render prompt templates."""
    name: str = "Shopping Assistant"
    personality: str = "friendly"
    response_length: int = 1
    technical_level: int = 1
    persuasive_level: int = 2
    offer_timing: str = "balanced"
    knowledge_base: List[str] = Field(
        default_factory=lambda: ["products", "pricing", "shipping", "returns"]
    )


class MessageRequest(BaseModel):
    """Request payload for the message endpoint."""
    message: str = ""


class StartConversationResponse(BaseModel):
    conversation_id: str
    message: str


class MessageResponse(BaseModel):
    """Response payload returned by the message endpoint."""
    response: str
    actions: List[Action]


class EndConversationResponse(BaseModel):
    message: str
