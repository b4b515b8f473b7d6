from __future__ import annotations


class ShopbotError(Exception):
    """Base error for the conversation engine."""


class InvalidMessageError(ShopbotError, ValueError):
    """Raised for caller-facing input problems such as an empty message."""


class HandlerTableError(ShopbotError):
    """Raised when the intent handler table does not cover every intent."""
