from __future__ import annotations

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .intents import derive_stage
from .models import ChatMessage, ConversationState

logger = logging.getLogger("shopbot.state")

# Fields derived or maintained by the store itself; callers cannot set them.
PROTECTED_FIELDS = {"stage", "conversation_history", "created_at", "updated_at"}


class ConversationStateStore:
    """Keyed store of per-conversation state with optional JSON persistence.

    Each call holds the store lock, so calls for different conversation ids never
    interfere. A turn still reads and later writes its own snapshot: overlapping
    turns for the same conversation id are last-write-wins on the fields each
    one touches.
    """

    def __init__(self, path: Optional[Path] = None, max_conversations: Optional[int] = None) -> None:
        """Purpose: Initialize the store and hydrate from disk if a path is given.
        Inputs/Outputs: Inputs are an optional file path and max_conversations cap; no return.
        Side Effects / State: Loads and caches conversation states in memory.
        Dependencies: Calls _load; relies on the ConversationState model.
        Failure Modes: Unreadable or malformed state files are logged and skipped.
        If Removed: The orchestrator has nowhere to keep dialog state between turns.
        Testing Notes: Verify load on startup populates the cache and respects the cap.
        """
        # Keep configuration and preload persisted states if present.
        self._path = path
        self._max_conversations = max_conversations
        self._states: Dict[str, ConversationState] = {}
        self._lock = threading.RLock()
        self._load()

    def _load(self) -> None:
        """Purpose: Load persisted conversation states from disk into memory.
        Inputs/Outputs: Reads from self._path; no return value.
        Side Effects / State: Populates the _states cache.
        Dependencies: Uses json.loads and pydantic validation.
        Failure Modes: An unreadable file or a wrong top-level shape results in an empty
            cache; entries that fail validation are skipped with a warning.
        If Removed: Previously stored conversations are never restored on startup.
        Testing Notes: Corrupt JSON should not crash; valid JSON should hydrate the cache.
        """
        if not self._path or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("state file %s is unreadable (%s); starting empty", self._path, exc)
            return
        conversations = data.get("conversations") if isinstance(data, dict) else None
        if not isinstance(conversations, dict):
            logger.warning("state file %s has no conversations object; starting empty", self._path)
            return
        for conversation_id, state in conversations.items():
            if not isinstance(state, dict):
                logger.warning("conversation=%s state=skipped reason=not-an-object", conversation_id)
                continue
            try:
                self._states[conversation_id] = ConversationState.model_validate(state)
            except ValidationError as exc:
                logger.warning("conversation=%s state=skipped reason=%s", conversation_id, exc)
        if self._prune():
            self._persist()

    def _persist(self) -> None:
        """Purpose: Write in-memory states to disk when a path is configured.
        Inputs/Outputs: Writes to self._path; no return value.
        Side Effects / State: Writes a JSON file keyed by conversation id.
        Dependencies: Uses json.dumps, a temp file, and os.replace.
        Failure Modes: IO errors raise exceptions (not caught here).
        If Removed: Conversations are never saved across restarts.
        Testing Notes: Ensure the file is created and reloads into an equal store.
        """
        if not self._path:
            return
        with self._lock:
            payload = {
                "conversations": {
                    conversation_id: state.model_dump() for conversation_id, state in self._states.items()
                }
            }
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_name(f"{self._path.name}.tmp")
            tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)

    def get(self, conversation_id: str) -> Optional[ConversationState]:
        """Return a copy of the stored state, or None for unknown ids."""
        with self._lock:
            state = self._states.get(conversation_id)
            return state.model_copy(deep=True) if state is not None else None

    def put(self, conversation_id: str, state: ConversationState) -> None:
        """Store a state object as-is under the given id."""
        with self._lock:
            self._states[conversation_id] = state.model_copy(deep=True)
            self._prune()
            self._persist()

    def get_or_create(self, conversation_id: str) -> ConversationState:
        """Purpose: Fetch the state for an id, creating the default state on first lookup.
        Inputs/Outputs: Input is conversation_id; output is a copy of the state.
        Side Effects / State: May insert a new entry and persist it.
        Dependencies: Uses ConversationState defaults and put.
        Failure Modes: Persist can raise IO errors.
        If Removed: Unknown conversation ids cannot start a dialog.
        Testing Notes: A fresh id yields message_count 0 and an empty history.
        """
        with self._lock:
            state = self.get(conversation_id)
            if state is None:
                state = ConversationState()
                self.put(conversation_id, state)
                logger.debug("conversation=%s state=created", conversation_id)
            return state

    def update(self, conversation_id: str, **updates: Any) -> ConversationState:
        """Purpose: Merge field updates into a conversation's state and recompute its stage.
        Inputs/Outputs: Inputs are conversation_id and field values; output is the new state.
        Side Effects / State: Replaces the cached state, appends the user message to
            history unless the same user entry already trails it, and persists.
        Dependencies: Uses derive_stage and ChatMessage.
        Failure Modes: Unknown or protected fields and a decreasing message_count raise
            ValueError; persist can raise IO errors.
        If Removed: The orchestrator cannot record intents, counts, or history.
        Testing Notes: Two updates with the same last_message store exactly one entry.
        """
        # Reject fields the store maintains itself or that the model does not define.
        invalid = [key for key in updates if key in PROTECTED_FIELDS or key not in ConversationState.model_fields]
        if invalid:
            raise ValueError(f"cannot update state fields: {', '.join(sorted(invalid))}")

        with self._lock:
            current = self.get_or_create(conversation_id)
            new_count = updates.get("message_count", current.message_count)
            if new_count < current.message_count:
                raise ValueError("message_count cannot decrease")

            merged = current.model_copy(update=updates, deep=True)
            merged.updated_at = time.time()

            last_message = updates.get("last_message")
            if last_message and not _trails_history(merged.conversation_history, "user", last_message):
                merged.conversation_history.append(ChatMessage(role="user", content=last_message))

            merged.stage = derive_stage(merged.message_count, merged.last_intent).value
            self._states[conversation_id] = merged
            self._prune()
            self._persist()
            return merged.model_copy(deep=True)

    def add_bot_response(self, conversation_id: str, response: str) -> ConversationState:
        """Purpose: Append an assistant reply to the conversation history.
        Inputs/Outputs: Inputs are conversation_id and reply text; output is the new state.
        Side Effects / State: Mutates cached history and persists.
        Dependencies: Uses ChatMessage and get_or_create.
        Failure Modes: Persist can raise IO errors.
        If Removed: Later recommendation prompts lose the assistant side of the dialog.
        Testing Notes: Verify the entry is appended with role "assistant".
        """
        with self._lock:
            state = self.get_or_create(conversation_id)
            state.conversation_history.append(ChatMessage(role="assistant", content=response))
            state.updated_at = time.time()
            self._states[conversation_id] = state
            self._persist()
            return state.model_copy(deep=True)

    def remove(self, conversation_id: str) -> bool:
        """Drop a conversation's state; returns True if it existed."""
        with self._lock:
            existed = self._states.pop(conversation_id, None) is not None
            if existed:
                self._persist()
            return existed

    def list_ids(self) -> List[str]:
        """Return conversation ids ordered by most recent update."""
        with self._lock:
            items = list(self._states.items())
        ordered = sorted(items, key=lambda item: item[1].updated_at, reverse=True)
        return [conversation_id for conversation_id, _ in ordered]

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._states

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def _prune(self) -> bool:
        """Purpose: Enforce max_conversations by dropping least-recently-updated states.
        Inputs/Outputs: No inputs; returns True if any states were removed.
        Side Effects / State: Mutates the _states cache.
        Dependencies: Uses _max_conversations and updated_at ordering.
        Failure Modes: None; no-op when the cap is unset or not exceeded.
        If Removed: The store grows without bound for long-running processes.
        Testing Notes: Set a low cap and verify the oldest state is dropped.
        """
        if not self._max_conversations or self._max_conversations <= 0:
            return False
        if len(self._states) <= self._max_conversations:
            return False
        keep_ids = set(self.list_ids()[: self._max_conversations])
        removed = [conversation_id for conversation_id in list(self._states) if conversation_id not in keep_ids]
        for conversation_id in removed:
            self._states.pop(conversation_id, None)
            logger.info("conversation=%s state=pruned", conversation_id)
        return bool(removed)


def _trails_history(history: List[ChatMessage], role: str, content: str) -> bool:
    # Duplicate-submission guard: only the last entry is compared.
    if not history:
        return False
    last = history[-1]
    return last.role == role and last.content == content
