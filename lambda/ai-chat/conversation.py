"""
Conversation windowing for Claude.

Turns the caller's chat history into the bounded message list sent to the
Anthropic Messages API.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Union

from models import ChatTurn

logger = logging.getLogger()

HISTORY_WINDOW = 10
ALLOWED_ROLES = ("user", "assistant")


def coerce_content(content: Any) -> str:
    """
    Coerce turn content to a string.

    Args:
        content: Content from the request (usually a string)

    Returns:
        str: The content itself, JSON text for lists, dicts, None and
        booleans ("null", "true"), otherwise its string representation
    """
    if isinstance(content, str):
        return content
    if content is None or isinstance(content, (bool, dict, list)):
        return json.dumps(content)
    return str(content)


def build_conversation(
    history: Iterable[Union[ChatTurn, Dict[str, Any]]],
    current_message: str,
    window: int = HISTORY_WINDOW,
) -> List[ChatTurn]:
    """
    Build the message list for one chat turn.

    Takes the last `window` history entries, drops any whose role is not
    user or assistant, and appends the current message verbatim as the
    final user turn. The result has at most `window + 1` turns and is
    never empty.

    Args:
        history: Prior turns in chronological order
        current_message: The user's new message (not trimmed)
        window: Number of history entries to consider

    Returns:
        List[ChatTurn]: Turns in chronological order
    """
    history = list(history or [])
    recent = history[-window:] if window > 0 else []

    turns = []
    dropped = 0
    for entry in recent:
        turn = entry if isinstance(entry, ChatTurn) else ChatTurn.model_validate(entry)
        if turn.role not in ALLOWED_ROLES:
            dropped += 1
            continue
        turns.append(ChatTurn(role=turn.role, content=coerce_content(turn.content)))

    if dropped:
        logger.info(f"[ai-chat] Dropped {dropped} history turns with unsupported roles")

    turns.append(ChatTurn(role="user", content=current_message))
    return turns


def to_messages(turns: List[ChatTurn]) -> List[Dict[str, str]]:
    """Convert turns to the Anthropic Messages API format."""
    return [{"role": turn.role, "content": turn.content} for turn in turns]
