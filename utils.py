"""
Utility functions for the voice lead agent.
"""
import json
import re
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(
    r"\b[\w.+-]+@(?:[A-Za-z0-9-]+\.)+[A-Za-z]{2,}\b",
    re.ASCII | re.IGNORECASE,
)


def normalize_event_to_dict(event: Any) -> Dict[str, Any]:
    """Convert a websocket frame to a dictionary.

    Raises ValueError when the frame is not a JSON object, so callers can log
    the raw payload and keep going.
    """
    if isinstance(event, dict):
        return event
    if isinstance(event, (bytes, bytearray)):
        event = event.decode()
    if isinstance(event, str):
        data = json.loads(event)
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        return data

    model_dump = getattr(event, "model_dump", None)
    if callable(model_dump):
        return model_dump()

    raise ValueError(f"unsupported event type {type(event).__name__}")


def standardize_phone_number(number: Optional[str]) -> Optional[str]:
    """Return the +1XXXXXXXXXX form of a US number, or None."""
    if not number:
        return None

    digits = re.sub(r"\D", "", str(number))
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if len(digits) == 10:
        return f"+1{digits}"

    logger.warning("Unusual phone number format", phone_number=number)
    return None


def extract_email(text: Optional[str]) -> Optional[str]:
    """First email-shaped substring of text, if any."""
    if not text:
        return None
    match = EMAIL_PATTERN.search(text)
    return match.group(0) if match else None


async def safe_task(coro, name: str = "task"):
    """Execute a coroutine with error handling."""
    try:
        return await coro
    except Exception:
        logger.exception("Task error", task=name)
        return None
