from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

from .config import load_settings
from .errors import InvalidMessageError
from .gemini_client import GeminiClient
from .models import (
    EndConversationResponse,
    MessageRequest,
    MessageResponse,
    StartConversationResponse,
)
from .orchestrator import build_orchestrator

BASE_DIR = Path(__file__).resolve().parent

ENV_PATH = BASE_DIR / ".env"
logger = logging.getLogger("shopbot.app")


def load_environment(env_path: Path = ENV_PATH) -> int:
    """Load .env, then configure logging from LOG_LEVEL; returns the applied level."""
    if env_path.exists():
        load_dotenv(env_path, override=True)
    else:
        load_dotenv()

    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    logging.getLogger("shopbot").setLevel(log_level)
    return log_level


load_environment()

app = FastAPI(title="Shopbot Conversation Engine")

settings = load_settings()
gemini = GeminiClient(settings)
orchestrator = build_orchestrator(settings, gemini)


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "conversations": len(orchestrator.store)}


@app.post("/api/chatbot/conversations", response_model=StartConversationResponse)
def start_conversation() -> StartConversationResponse:
    """Purpose: Allocate a new conversation id.
    Inputs/Outputs: No inputs; returns the conversation id and a status message.
    Side Effects / State: Creates an empty state entry in the store.
    Dependencies: Uses ConversationOrchestrator.start_conversation.
    Failure Modes: Store persistence errors propagate as 500 errors.
    If Removed: Chat widgets cannot open a conversation.
    Testing Notes: POST and verify a non-empty conversation_id is returned.
    """
    conversation_id = orchestrator.start_conversation()
    return StartConversationResponse(conversation_id=conversation_id, message="Conversation started")


@app.post("/api/chatbot/conversations/{conversation_id}/messages", response_model=MessageResponse)
def send_message(conversation_id: str, request: MessageRequest) -> MessageResponse:
    """Purpose: Handle a chat message and run the conversation engine.
    Inputs/Outputs: Inputs are the conversation id and MessageRequest; output is the
        reply text with any actions.
    Side Effects / State: Updates conversation state and history in the store.
    Dependencies: Uses ConversationOrchestrator.process_message.
    Failure Modes: Empty messages return 400; engine failures degrade to an apology
        inside the orchestrator rather than an HTTP error.
    If Removed: Core chat functionality is unavailable.
    Testing Notes: Send an empty message and verify the 400 detail.
    """
    try:
        turn = orchestrator.process_message(conversation_id, request.message)
    except InvalidMessageError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return MessageResponse(response=turn.response, actions=turn.actions)


@app.post("/api/chatbot/conversations/{conversation_id}/end", response_model=EndConversationResponse)
def end_conversation(conversation_id: str) -> EndConversationResponse:
    """End a conversation and release its state."""
    orchestrator.end_conversation(conversation_id)
    return EndConversationResponse(message="Conversation ended")


@app.get("/api/chatbot/conversations/{conversation_id}")
def get_conversation(conversation_id: str) -> dict:
    """Purpose: Return the stored state for a conversation.
    Inputs/Outputs: Input is conversation_id; output is the state as a dict.
    Side Effects / State: None.
    Dependencies: Uses ConversationOrchestrator.get_state.
    Failure Modes: Unknown conversations return 404.
    If Removed: Operators cannot inspect stage, intent, and history for a conversation.
    Testing Notes: Send one message, then verify message_count and stage.
    """
    state = orchestrator.get_state(conversation_id)
    if state is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"conversation_id": conversation_id, **state.model_dump()}
