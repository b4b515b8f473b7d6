from __future__ import annotations

from enum import Enum
from typing import Optional


class Intent(str, Enum):
    """Closed set of message intents the classifier may return."""
    GREETING = "greeting"
    PRODUCT_INQUIRY = "product_inquiry"
    PRICE_INQUIRY = "price_inquiry"
    SHIPPING_INQUIRY = "shipping_inquiry"
    RETURN_POLICY = "return_policy"
    CHECKOUT_HELP = "checkout_help"
    OBJECTION = "objection"
    COMPLAINT = "complaint"
    GENERAL_QUESTION = "general_question"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Intent":
        """Purpose: Map a raw label to an Intent member.
        Inputs/Outputs: Input is a label string or None; output is an Intent.
        Side Effects / State: None; pure function.
        Dependencies: Used by the classifier and the handler table.
        Failure Modes: Unknown or empty labels return GENERAL_QUESTION.
        If Removed: Model output labels would reach dispatch unvalidated.
        Testing Notes: Check case/whitespace tolerance and the unknown fallback.
        """
        # Normalize casing and whitespace before the lookup.
        if isinstance(value, cls):
            return value
        cleaned = str(value or "").strip().lower().replace(" ", "_").replace("-", "_")
        try:
            return cls(cleaned)
        except ValueError:
            return cls.GENERAL_QUESTION


class Stage(str, Enum):
    """Derived conversation stage labels."""
    GREETING = "greeting"
    CHECKOUT = "checkout"
    PRODUCT_DISCOVERY = "product_discovery"
    OBJECTION_HANDLING = "objection_handling"
    ENGAGEMENT = "engagement"
    INFORMATION = "information"


DISCOVERY_INTENTS = {Intent.PRODUCT_INQUIRY.value, Intent.PRICE_INQUIRY.value}
ENGAGEMENT_MIN_MESSAGES = 5


def derive_stage(message_count: int, last_intent: Optional[str]) -> Stage:
    """Purpose: Compute the conversation stage from message count and last intent.
    Inputs/Outputs: Inputs are message_count and last_intent label; output is a Stage.
    Side Effects / State: None; pure function, first matching rule wins.
    Dependencies: Called by ConversationStateStore on every state update.
    Failure Modes: None; unknown intents fall through to the count-based rules.
    If Removed: Stored stage labels go stale and stage-aware clients misreport progress.
    Testing Notes: message_count <= 1 is always GREETING regardless of intent.
    """
    if message_count <= 1:
        return Stage.GREETING
    intent = last_intent.value if isinstance(last_intent, Intent) else last_intent
    if intent == Intent.CHECKOUT_HELP.value:
        return Stage.CHECKOUT
    if intent in DISCOVERY_INTENTS:
        return Stage.PRODUCT_DISCOVERY
    if intent == Intent.OBJECTION.value:
        return Stage.OBJECTION_HANDLING
    if message_count >= ENGAGEMENT_MIN_MESSAGES:
        return Stage.ENGAGEMENT
    return Stage.INFORMATION
