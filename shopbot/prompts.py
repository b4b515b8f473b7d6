"""Prompt templates for the shopping assistant.

Prompts that depend on the assistant persona are rendered from a BotConfig;
the rest ship as text files next to this module. Any template can be
overridden by dropping ``<name>.txt`` into the configured prompts directory.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .intents import Intent
from .models import BotConfig

logger = logging.getLogger("shopbot.prompts")

BUNDLED_PROMPTS_DIR = Path(__file__).resolve().parent / "prompt_templates"

BASE_SYSTEM = "base_system_prompt"
WELCOME = "welcome_prompt"
PRODUCT_RECOMMENDATION = "product_recommendation_prompt"
OBJECTION_HANDLING = "objection_handling_prompt"
CHECKOUT = "checkout_prompt"
INTENT_CLASSIFICATION = "intent_classification_prompt"
PRICE_INQUIRY = "price_inquiry_prompt"
SHIPPING_INQUIRY = "shipping_inquiry_prompt"
RETURN_POLICY = "return_policy_prompt"
COMPLAINT = "complaint_prompt"
GENERAL_QUESTION = "general_question_prompt"
RECOMMENDATION_FORMAT = "recommendation_format_prompt"

BUNDLED_PROMPTS = [
    PRICE_INQUIRY,
    SHIPPING_INQUIRY,
    RETURN_POLICY,
    COMPLAINT,
    GENERAL_QUESTION,
    RECOMMENDATION_FORMAT,
]

PERSONALITY_TRAITS = {
    "friendly": "warm, approachable, and conversational",
    "professional": "polite, respectful, and informative",
    "sales": "persuasive, enthusiastic, and solution-oriented",
    "custom": "tailored to the specific needs of the business",
}
RESPONSE_LENGTHS = ["concise and to-the-point", "balanced and informative", "detailed and comprehensive"]
TECHNICAL_LEVELS = [
    "simple and easy to understand",
    "moderately technical when needed",
    "detailed and technical when appropriate",
]
PERSUASIVE_LEVELS = ["subtly encouraging", "moderately persuasive", "strongly convincing"]
PERSUASIVE_ADVERBS = ["subtly", "moderately", "strongly"]

INTENT_DESCRIPTIONS = {
    Intent.GREETING: "Customer is saying hello or starting the conversation",
    Intent.PRODUCT_INQUIRY: "Customer is asking about products or product features",
    Intent.PRICE_INQUIRY: "Customer is asking about pricing",
    Intent.SHIPPING_INQUIRY: "Customer is asking about shipping",
    Intent.RETURN_POLICY: "Customer is asking about returns or refunds",
    Intent.CHECKOUT_HELP: "Customer needs help with the checkout process",
    Intent.OBJECTION: "Customer is expressing a concern or hesitation",
    Intent.COMPLAINT: "Customer is expressing dissatisfaction",
    Intent.GENERAL_QUESTION: "Customer has a general question not covered by other categories",
}


def _pick(options: List[str], index: int) -> str:
    # Out-of-range levels use the middle option.
    if 0 <= index < len(options):
        return options[index]
    return options[1]


def _offer_timing_line(timing: str) -> str:
    if timing == "early":
        return "Present offers early in the conversation"
    if timing == "late":
        return "Present offers only after building rapport"
    return "Present offers at appropriate moments"


def render_base_system_prompt(config: BotConfig) -> str:
    """Purpose: Render the persona-level system prompt shared by every handler.
    Inputs/Outputs: Input is a BotConfig; output is the prompt text.
    Side Effects / State: None; pure function.
    Dependencies: Uses the personality/length/technical/persuasive lookup tables.
    Failure Modes: Unknown personalities and out-of-range levels use defaults.
    If Removed: Handler replies lose persona, tone, and guardrails.
    Testing Notes: Check the bot name and knowledge base appear in the output.
    """
    personality = PERSONALITY_TRAITS.get(config.personality, PERSONALITY_TRAITS["friendly"])
    knowledge = ", ".join(config.knowledge_base) if config.knowledge_base else "our products"
    return f"""You are {config.name}, an AI shopping assistant for our online store.

PERSONALITY:
You are {personality}.

RESPONSE STYLE:
- Length: {_pick(RESPONSE_LENGTHS, config.response_length)}
- Technical level: {_pick(TECHNICAL_LEVELS, config.technical_level)}
- Persuasiveness: {_pick(PERSUASIVE_LEVELS, config.persuasive_level)}
- Offer timing: {_offer_timing_line(config.offer_timing)}

KNOWLEDGE BASE:
You have knowledge about: {knowledge}

GOALS:
1. Help customers find the right products for their needs
2. Provide accurate information about products, pricing, and policies
3. Address concerns or objections customers may have
4. Guide customers through the purchasing process
5. Create a positive and helpful shopping experience

CONSTRAINTS:
1. If you don't know something, admit it rather than making up information
2. Keep responses focused on the customer's needs
3. Don't be pushy or overly sales-focused
4. Respect customer privacy and don't ask for personal information

Remember to be helpful, accurate, and focused on providing value to the customer."""


def render_welcome_prompt(config: BotConfig) -> str:
    return (
        f"Greet the customer in a {config.personality} tone. Introduce yourself as {config.name}, "
        "and ask how you can help them today. Keep your greeting concise and welcoming."
    )


def render_product_recommendation_prompt(config: BotConfig) -> str:
    adverb = _pick(PERSUASIVE_ADVERBS, config.persuasive_level)
    return f"""Based on the customer's stated preferences and needs, recommend appropriate products from our catalog. Be {adverb} persuasive about the benefits of these products specifically for their situation. Limit recommendations to 3 products maximum.

When recommending products, include:
1. The product name
2. Key features that match their needs
3. How it specifically solves their problem or meets their requirement
4. Price information if available and appropriate

If you need more information to make a good recommendation, ask specific questions to narrow down their needs."""


def render_objection_handling_prompt(config: BotConfig) -> str:
    return """The customer has raised a concern or objection. Address it empathetically and provide helpful information to overcome their concern.

Common objections include:
1. Price concerns
2. Uncertainty about product fit
3. Shipping or delivery concerns
4. Questions about return policy
5. Hesitation about buying online

For each type of objection:
1. Acknowledge their concern as valid
2. Provide factual information that addresses the concern
3. Offer a solution or alternative if appropriate
4. Gently reassure them and move the conversation forward"""


def render_checkout_prompt(config: BotConfig) -> str:
    return """Guide the customer through the checkout process. Explain options clearly and encourage them to complete their purchase. Be helpful with any questions they have about payment methods, shipping options, or other checkout-related concerns.

Remember to:
1. Reassure them about security
2. Explain any special offers or discounts they might be eligible for
3. Clarify shipping costs and estimated delivery times
4. Mention our return policy briefly if appropriate
5. Thank them for their purchase"""


def render_intent_classification_prompt(config: Optional[BotConfig] = None) -> str:
    """Render the classifier instruction; the category list always covers every Intent."""
    categories = "\n".join(f"- {intent.value}: {INTENT_DESCRIPTIONS[intent]}" for intent in Intent)
    return f"""Analyze the customer message and identify their primary intent from the following categories:
{categories}

Respond in JSON format with the detected intent and confidence score:
{{
  "intent": "the_detected_intent_category",
  "confidence": 0.95
}}"""


RENDERERS: Dict[str, Callable[[BotConfig], str]] = {
    BASE_SYSTEM: render_base_system_prompt,
    WELCOME: render_welcome_prompt,
    PRODUCT_RECOMMENDATION: render_product_recommendation_prompt,
    OBJECTION_HANDLING: render_objection_handling_prompt,
    CHECKOUT: render_checkout_prompt,
    INTENT_CLASSIFICATION: render_intent_classification_prompt,
}


def load_prompt(prompt_path: Path) -> str:
    """Purpose: Load a prompt file as UTF-8 text and strip BOM and surrounding whitespace.
    Inputs/Outputs: Input is a Path to the prompt file; output is the decoded string.
    Side Effects / State: None; reads the filesystem.
    Dependencies: Uses Path.read_text/read_bytes; used by PromptLibrary.
    Failure Modes: UnicodeDecodeError triggers a tolerant decode that drops invalid bytes;
        a missing file raises FileNotFoundError.
    If Removed: Prompt overrides and bundled prompts cannot be read.
    Testing Notes: Validate BOM stripping and fallback decoding on non-UTF8 files.
    """
    try:
        text = prompt_path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        text = prompt_path.read_bytes().decode("utf-8", errors="ignore")
    return text.lstrip("\ufeff").strip()


class PromptLibrary:
    """Resolves prompt templates by name: override file, rendered default, then bundled file."""

    def __init__(self, prompts_dir: Optional[Path] = None, bot_config: Optional[BotConfig] = None) -> None:
        self._prompts_dir = prompts_dir or BUNDLED_PROMPTS_DIR
        self._bot_config = bot_config or BotConfig()
        self._cache: Dict[str, str] = {}

    @property
    def bot_config(self) -> BotConfig:
        return self._bot_config

    def get(self, name: str) -> str:
        """Purpose: Return the prompt text for a template name.
        Inputs/Outputs: Input is a template name without extension; output is prompt text.
        Side Effects / State: Caches resolved prompts on first use.
        Dependencies: Uses load_prompt and RENDERERS.
        Failure Modes: Raises KeyError when no override, renderer, or bundled file exists.
        If Removed: Classifier, handlers, and recommender have no instructions.
        Testing Notes: An override file must win over the rendered default.
        """
        if name in self._cache:
            return self._cache[name]
        override = self._prompts_dir / f"{name}.txt"
        bundled = BUNDLED_PROMPTS_DIR / f"{name}.txt"
        if override.exists():
            text = load_prompt(override)
            logger.debug("prompt=%s source=%s", name, override)
        elif name in RENDERERS:
            text = RENDERERS[name](self._bot_config)
        elif bundled.exists():
            text = load_prompt(bundled)
        else:
            raise KeyError(f"Unknown prompt template: {name}")
        self._cache[name] = text
        return text

    def names(self) -> List[str]:
        return list(RENDERERS) + BUNDLED_PROMPTS


def write_prompt_templates(bot_config: BotConfig, out_dir: Path) -> List[Path]:
    """Purpose: Write every prompt template for a bot configuration to a directory.
    Inputs/Outputs: Inputs are a BotConfig and output directory; returns written paths.
    Side Effects / State: Creates the directory and writes one .txt file per template.
    Dependencies: Uses PromptLibrary with the bundled prompts as the base.
    Failure Modes: IO errors propagate.
    If Removed: Operators cannot export and hand-edit the generated prompts.
    Testing Notes: Every name from PromptLibrary.names() must produce a file.
    """
    library = PromptLibrary(BUNDLED_PROMPTS_DIR, bot_config)
    out_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for name in library.names():
        path = out_dir / f"{name}.txt"
        path.write_text(library.get(name) + "\n", encoding="utf-8")
        written.append(path)
    logger.info("wrote %d prompt templates to %s", len(written), out_dir)
    return written


def load_bot_config(path: Optional[Path]) -> BotConfig:
    """Load a BotConfig from a JSON file, or the defaults when no path is set."""
    if not path:
        return BotConfig()
    return BotConfig.model_validate_json(path.read_text(encoding="utf-8"))
