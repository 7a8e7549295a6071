"""
Host event payloads, validated at the boundary.

The runtime hands us untyped dicts. Each message is parsed into a tagged union
(role in {user, assistant}; content is a string or a list of typed blocks).
Anything that does not fit is ignored rather than trusted.
"""

import logging
from typing import Any, List, Literal, Optional, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .capture_filter import Capture

logger = logging.getLogger(__name__)


class TextBlock(BaseModel):
    """A text-typed content block. Other block types are skipped."""
    model_config = ConfigDict(extra="ignore")

    type: Literal["text"]
    text: str


class ConversationMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: Literal["user", "assistant"]
    content: Union[str, List[Any]]


class BeforeTurnEvent(BaseModel):
    """Payload of the pre-turn hook."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    prompt: str = ""
    session_key: Optional[str] = Field(default=None, alias="sessionKey")

    @classmethod
    def parse(cls, raw: Any) -> "BeforeTurnEvent":
        if not isinstance(raw, dict):
            return cls()
        prompt = raw.get("prompt")
        session_key = raw.get("sessionKey", raw.get("session_key"))
        return cls(
            prompt=str(prompt) if prompt is not None else "",
            session_key=str(session_key) if session_key else None,
        )


class AfterTurnEvent(BaseModel):
    """Payload of the post-turn hook. messages stays raw until extraction."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    success: bool = False
    messages: Any = None
    session_key: Optional[str] = Field(default=None, alias="sessionKey")
    channel: Optional[str] = None

    @classmethod
    def parse(cls, raw: Any) -> "AfterTurnEvent":
        if not isinstance(raw, dict):
            return cls()
        session_key = raw.get("sessionKey", raw.get("session_key"))
        channel = raw.get("channel")
        return cls(
            success=raw.get("success") is True,
            messages=raw.get("messages"),
            session_key=str(session_key) if session_key else None,
            channel=str(channel) if channel else None,
        )


def _block_text(block: Any) -> Optional[str]:
    if not isinstance(block, dict) or block.get("type") != "text":
        return None
    try:
        return TextBlock.model_validate(block).text
    except pydantic.ValidationError:
        return None


def extract_captures(raw_messages: List[Any]) -> List[Capture]:
    """
    Flatten runtime messages into role-tagged text captures.

    String content yields one capture; block lists yield one capture per
    text block, in order. Non-text blocks and malformed messages are skipped.
    """
    captures: List[Capture] = []
    for raw in raw_messages:
        if not isinstance(raw, dict):
            continue
        try:
            message = ConversationMessage.model_validate(raw)
        except pydantic.ValidationError:
            continue

        if isinstance(message.content, str):
            captures.append(Capture(role=message.role, text=message.content))
            continue

        for block in message.content:
            text = _block_text(block)
            if text is not None:
                captures.append(Capture(role=message.role, text=text))
    return captures
