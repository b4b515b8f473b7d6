from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for the model, prompts, offer timing, and state storage."""
    gemini_api_key: str
    gemini_model: str
    prompts_dir: Path
    offer_timing: str
    bot_config_path: Optional[Path]
    state_path: Optional[Path]
    max_conversations: Optional[int]
    history_window: int
    request_timeout: float


def _optional_path(value: Optional[str]) -> Optional[Path]:
    if not value:
        return None
    return Path(value).expanduser().resolve()


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for the default prompts directory.
    Failure Modes: Invalid MAX_CONVERSATIONS/HISTORY_WINDOW/REQUEST_TIMEOUT values raise ValueError.
    If Removed: The engine cannot be configured and the app fails at startup.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve prompt and storage paths, then build Settings.
    prompts_dir = _optional_path(os.getenv("PROMPTS_DIR")) or (BASE_DIR / "prompt_templates").resolve()
    max_conversations = os.getenv("MAX_CONVERSATIONS")

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        prompts_dir=prompts_dir,
        offer_timing=os.getenv("OFFER_TIMING", "").strip().lower(),
        bot_config_path=_optional_path(os.getenv("BOT_CONFIG_PATH")),
        state_path=_optional_path(os.getenv("STATE_PATH")),
        max_conversations=int(max_conversations) if max_conversations else None,
        history_window=int(os.getenv("HISTORY_WINDOW", "5")),
        request_timeout=float(os.getenv("REQUEST_TIMEOUT", "30")),
    )
