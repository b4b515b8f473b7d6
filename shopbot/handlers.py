"""Intent handlers and the static intent-to-handler dispatch table.

Each handler answers one intent category. Prompted handlers combine the
persona system prompt with their own instruction and replay the recent
conversation window to the completion service.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Type, Union

from .errors import HandlerTableError
from .gemini_client import GeminiClient, history_contents, user_content
from .intents import Intent
from .models import ChatMessage, ConversationState, HandlerReply
from .prompts import (
    BASE_SYSTEM,
    CHECKOUT,
    COMPLAINT,
    GENERAL_QUESTION,
    OBJECTION_HANDLING,
    PRICE_INQUIRY,
    PRODUCT_RECOMMENDATION,
    RETURN_POLICY,
    SHIPPING_INQUIRY,
    WELCOME,
    PromptLibrary,
)

logger = logging.getLogger("shopbot.handlers")


class IntentHandler(ABC):
    """Capability that produces a reply for one intent."""

    intent: Intent

    @abstractmethod
    def handle(self, message: str, state: ConversationState) -> HandlerReply:
        """Produce a reply for the message given the current conversation state."""


class PromptedHandler(IntentHandler):
    """Handler that answers through the completion service with an intent-specific prompt."""

    prompt_name: str = GENERAL_QUESTION
    fallback_reply: str = "Thanks for your message! Could you tell me a bit more so I can help?"
    temperature: float = 0.4

    def __init__(self, gemini: GeminiClient, prompts: PromptLibrary, history_window: int = 5) -> None:
        self._gemini = gemini
        self._prompts = prompts
        self._history_window = history_window

    def system_instruction(self) -> str:
        return f"{self._prompts.get(BASE_SYSTEM)}\n\n{self._prompts.get(self.prompt_name)}"

    def build_contents(self, message: str, state: ConversationState) -> List[dict]:
        """Purpose: Build the role-tagged content list for a handler reply.
        Inputs/Outputs: Inputs are the message and state; output is a Gemini content list.
        Side Effects / State: None; pure function over the state snapshot.
        Dependencies: Uses history_contents and user_content.
        Failure Modes: None; an empty history yields just the current message.
        If Removed: Replies lose the recent conversation context.
        Testing Notes: The current message must appear exactly once, last.
        """
        history: List[ChatMessage] = list(state.conversation_history)
        # The store already appended this turn's message; replay it once, at the end.
        if history and history[-1].role == "user" and history[-1].content == message:
            history = history[:-1]
        window = history[-self._history_window :] if self._history_window > 0 else []
        return history_contents(window) + [user_content(message)]

    def handle(self, message: str, state: ConversationState) -> HandlerReply:
        answer = self._gemini.generate_content(
            self.build_contents(message, state),
            system_instruction=self.system_instruction(),
            temperature=self.temperature,
        )
        if not answer:
            logger.info("intent=%s route=fallback_reply", self.intent.value)
            answer = self.fallback_reply
        return HandlerReply(response=answer)


class WelcomeHandler(PromptedHandler):
    intent = Intent.GREETING
    prompt_name = WELCOME

    @property
    def fallback_reply(self) -> str:  # type: ignore[override]
        return f"Hi there! I'm {self._prompts.bot_config.name}. How can I help you today?"


class ProductInquiryHandler(PromptedHandler):
    intent = Intent.PRODUCT_INQUIRY
    prompt_name = PRODUCT_RECOMMENDATION
    fallback_reply = "Happy to help you find the right product! What are you looking for?"


class PriceInquiryHandler(PromptedHandler):
    intent = Intent.PRICE_INQUIRY
    prompt_name = PRICE_INQUIRY
    temperature = 0.2
    fallback_reply = "Which product would you like pricing for? I'll get you the details."


class ShippingInquiryHandler(PromptedHandler):
    intent = Intent.SHIPPING_INQUIRY
    prompt_name = SHIPPING_INQUIRY
    temperature = 0.2
    fallback_reply = "We offer several shipping options. Where would you like your order delivered?"


class ReturnPolicyHandler(PromptedHandler):
    intent = Intent.RETURN_POLICY
    prompt_name = RETURN_POLICY
    temperature = 0.2
    fallback_reply = "Returns are easy. Tell me which order you have in mind and I'll walk you through it."


class CheckoutHandler(PromptedHandler):
    intent = Intent.CHECKOUT_HELP
    prompt_name = CHECKOUT
    fallback_reply = "I can help you check out. Where are you getting stuck?"


class ObjectionHandler(PromptedHandler):
    intent = Intent.OBJECTION
    prompt_name = OBJECTION_HANDLING
    fallback_reply = "That's a fair concern. Could you tell me more about what's holding you back?"


class ComplaintHandler(PromptedHandler):
    intent = Intent.COMPLAINT
    prompt_name = COMPLAINT
    temperature = 0.2
    fallback_reply = "I'm really sorry about that. Could you share what happened so I can help put it right?"


class GeneralQuestionHandler(PromptedHandler):
    intent = Intent.GENERAL_QUESTION
    prompt_name = GENERAL_QUESTION


HANDLER_CLASSES: Dict[Intent, Type[PromptedHandler]] = {
    Intent.GREETING: WelcomeHandler,
    Intent.PRODUCT_INQUIRY: ProductInquiryHandler,
    Intent.PRICE_INQUIRY: PriceInquiryHandler,
    Intent.SHIPPING_INQUIRY: ShippingInquiryHandler,
    Intent.RETURN_POLICY: ReturnPolicyHandler,
    Intent.CHECKOUT_HELP: CheckoutHandler,
    Intent.OBJECTION: ObjectionHandler,
    Intent.COMPLAINT: ComplaintHandler,
    Intent.GENERAL_QUESTION: GeneralQuestionHandler,
}


class HandlerTable:
    """Exhaustive mapping from every Intent to one handler instance."""

    def __init__(self, handlers: Dict[Intent, IntentHandler]) -> None:
        """Purpose: Validate and store the intent-to-handler mapping.
        Inputs/Outputs: Input is a dict keyed by Intent; no return value.
        Side Effects / State: Stores a copy of the mapping.
        Dependencies: Iterates the Intent enum.
        Failure Modes: Raises HandlerTableError if any intent lacks a handler.
        If Removed: Dispatch falls back to ad-hoc lookups with silent gaps.
        Testing Notes: Drop one entry and assert construction fails.
        """
        missing = [intent.value for intent in Intent if intent not in handlers]
        if missing:
            raise HandlerTableError(f"no handler registered for: {', '.join(missing)}")
        self._handlers = dict(handlers)

    @classmethod
    def default(cls, gemini: GeminiClient, prompts: PromptLibrary, history_window: int = 5) -> "HandlerTable":
        return cls(
            {intent: handler_cls(gemini, prompts, history_window) for intent, handler_cls in HANDLER_CLASSES.items()}
        )

    def handler_for(self, intent: Union[Intent, str, None]) -> IntentHandler:
        """Return the handler for an intent; unknown labels use the general_question handler."""
        return self._handlers[Intent.parse(intent)]

    def get(self, intent: Intent) -> Optional[IntentHandler]:
        return self._handlers.get(intent)
