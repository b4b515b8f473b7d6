"""Conversation orchestration for the shopping assistant.

Role:
    Entry point for a chat turn. Sequences state loading, intent classification,
    state update, handler dispatch, and the recommendation policy, and turns any
    unexpected failure into an apology reply.

Turn data contract (TurnContext fields passed across steps):
    - state: ConversationState loaded at the start of the turn, replaced by the
      updated snapshot after the state update step.
    - intent: IntentResult from the classifier (degraded on classifier failure).
    - reply: HandlerReply from the intent handler; recommendation actions are
      appended to reply.actions.
    - recommendations: RecommendationResult when the policy fired.

Step contracts:
    Load State: get or lazily create the conversation's state.
    Classify: classify the message; never raises.
    Update State: record intent and message, bump message_count, recompute stage.
    Handle: dispatch to the intent handler with the updated state.
    Recommend: skipped unless the offer policy fires for the updated state.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from .config import Settings
from .errors import InvalidMessageError
from .gemini_client import GeminiClient
from .handlers import HandlerTable
from .intent_classifier import IntentClassifier
from .models import Action, ChatTurn, ConversationState, HandlerReply, IntentResult, RecommendationResult
from .pipeline import PipelineStep, StepRunner
from .prompts import PromptLibrary, load_bot_config
from .recommendation import RecommendationGenerator, RecommendationPolicy
from .state_store import ConversationStateStore

logger = logging.getLogger("shopbot.orchestrator")

APOLOGY_REPLY = "I'm sorry, I'm having trouble processing your request right now. Can you try again?"
PRODUCT_RECOMMENDATIONS_ACTION = "product_recommendations"


@dataclass
class TurnContext:
    """Mutable context passed through each turn step."""
    conversation_id: str
    message: str
    state: Optional[ConversationState] = None
    intent: Optional[IntentResult] = None
    reply: Optional[HandlerReply] = None
    recommendations: Optional[RecommendationResult] = None


class ConversationOrchestrator:
    def __init__(
        self,
        store: ConversationStateStore,
        classifier: IntentClassifier,
        handlers: HandlerTable,
        policy: RecommendationPolicy,
        recommender: RecommendationGenerator,
    ) -> None:
        """Purpose: Wire the engine components and build the turn step runner.
        Inputs/Outputs: Inputs are the state store, classifier, handler table, offer
            policy, and recommender; no return value.
        Side Effects / State: Constructs a StepRunner with ordered steps.
        Dependencies: Uses StepRunner/PipelineStep and the step methods on this class.
        Failure Modes: None at init; runtime errors occur within step functions.
        If Removed: The HTTP layer has no way to process chat turns.
        Testing Notes: Instantiate with fakes and verify step order.
        """
        self._store = store
        self._classifier = classifier
        self._handlers = handlers
        self._policy = policy
        self._recommender = recommender
        self._runner: StepRunner[TurnContext] = StepRunner(
            [
                PipelineStep("load_state", self._step_load_state),
                PipelineStep("classify", self._step_classify),
                PipelineStep("update_state", self._step_update_state),
                PipelineStep("handle", self._step_handle),
                PipelineStep("recommend", self._step_recommend, skip_if=self._skip_recommend),
            ]
        )

    @property
    def store(self) -> ConversationStateStore:
        return self._store

    def start_conversation(self) -> str:
        """Allocate a fresh conversation id and create its state."""
        conversation_id = uuid.uuid4().hex
        self._store.get_or_create(conversation_id)
        logger.info("conversation=%s started", conversation_id)
        return conversation_id

    def end_conversation(self, conversation_id: str) -> bool:
        """Release a conversation's state; returns True if there was state to release."""
        released = self._store.remove(conversation_id)
        logger.info("conversation=%s ended released=%s", conversation_id, released)
        return released

    def get_state(self, conversation_id: str) -> Optional[ConversationState]:
        return self._store.get(conversation_id)

    def process_message(self, conversation_id: str, message: str) -> ChatTurn:
        """Purpose: Run one chat turn and return the reply with any actions.
        Inputs/Outputs: Inputs are conversation_id and message; output is a ChatTurn.
        Side Effects / State: Updates the conversation's state and history in the store.
        Dependencies: Uses the step runner, the state store, and every engine component.
        Failure Modes: Empty ids or messages raise InvalidMessageError; any other
            exception becomes the apology reply with no actions.
        If Removed: Core chat functionality is unavailable.
        Testing Notes: Make a handler raise and assert the apology reply is returned.
        """
        if not conversation_id or not conversation_id.strip():
            raise InvalidMessageError("Conversation id is required")
        if message is None or not message.strip():
            raise InvalidMessageError("Message is required")

        context = TurnContext(conversation_id=conversation_id, message=message)
        logger.info("conversation=%s question=%s", conversation_id, message)
        try:
            self._runner.run(context)
            reply = context.reply or HandlerReply(response=APOLOGY_REPLY)
            self._store.add_bot_response(conversation_id, reply.response)
        except Exception:
            logger.exception("conversation=%s turn failed", conversation_id)
            return ChatTurn(response=APOLOGY_REPLY, actions=[])
        logger.info(
            "conversation=%s answer=%s actions=%s",
            conversation_id,
            reply.response,
            [action.type for action in reply.actions],
        )
        return ChatTurn(response=reply.response, actions=list(reply.actions))

    def _step_load_state(self, context: TurnContext) -> None:
        context.state = self._store.get_or_create(context.conversation_id)

    def _step_classify(self, context: TurnContext) -> None:
        context.intent = self._classifier.classify(context.message)
        if context.intent.degraded:
            logger.info("conversation=%s intent=degraded", context.conversation_id)

    def _step_update_state(self, context: TurnContext) -> None:
        """Purpose: Record the classified intent and message on the conversation state.
        Inputs/Outputs: Input is TurnContext; replaces context.state with the update result.
        Side Effects / State: Writes to the store (history append, count bump, stage).
        Dependencies: Uses ConversationStateStore.update.
        Failure Modes: Store errors propagate to process_message.
        If Removed: Stage, timing policy, and history never advance.
        Testing Notes: message_count increments by exactly one per turn.
        """
        # The count is derived from the snapshot read in load_state; overlapping turns
        # for the same conversation can therefore write the same value.
        context.state = self._store.update(
            context.conversation_id,
            last_intent=context.intent.intent,
            last_message=context.message,
            message_count=context.state.message_count + 1,
        )
        logger.info(
            "conversation=%s intent=%s confidence=%.2f count=%d stage=%s",
            context.conversation_id,
            context.intent.intent,
            context.intent.confidence,
            context.state.message_count,
            context.state.stage,
        )

    def _step_handle(self, context: TurnContext) -> None:
        handler = self._handlers.handler_for(context.intent.intent)
        context.reply = handler.handle(context.message, context.state)

    def _skip_recommend(self, context: TurnContext) -> bool:
        return not self._policy.should_recommend(context.intent.intent, context.state)

    def _step_recommend(self, context: TurnContext) -> None:
        context.recommendations = self._recommender.recommend(context.message, context.state)
        if context.recommendations.products:
            context.reply.actions.append(
                Action(type=PRODUCT_RECOMMENDATIONS_ACTION, products=context.recommendations.products)
            )


def build_orchestrator(settings: Settings, gemini: GeminiClient) -> ConversationOrchestrator:
    """Purpose: Construct a fully wired orchestrator from settings.
    Inputs/Outputs: Inputs are Settings and a GeminiClient; output is an orchestrator.
    Side Effects / State: Loads the bot config and hydrates the state store from disk.
    Dependencies: Uses load_bot_config, PromptLibrary, and every engine component.
    Failure Modes: An unreadable or invalid bot config file raises at startup.
    If Removed: The app module must wire components by hand.
    Testing Notes: Pass a fake client and check offer timing comes from settings.
    """
    bot_config = load_bot_config(settings.bot_config_path)
    prompts = PromptLibrary(settings.prompts_dir, bot_config)
    # OFFER_TIMING wins when set explicitly; otherwise the bot config decides.
    offer_timing = settings.offer_timing or bot_config.offer_timing
    return ConversationOrchestrator(
        store=ConversationStateStore(settings.state_path, max_conversations=settings.max_conversations),
        classifier=IntentClassifier(gemini, prompts),
        handlers=HandlerTable.default(gemini, prompts, settings.history_window),
        policy=RecommendationPolicy(offer_timing),
        recommender=RecommendationGenerator(gemini, prompts, settings.history_window),
    )
