"""
API Format Identifiers

Every transformer declares the wire format it speaks with one of these values.
"""

from enum import Enum


class APIFormat(str, Enum):
    """Supported wire formats."""
    OPENAI_CHAT_COMPLETION = "openai/chat_completions"
    OPENAI_RESPONSES = "openai/responses"
    ANTHROPIC_MESSAGE = "anthropic/messages"
    GEMINI_CONTENTS = "gemini/contents"

    @classmethod
    def from_string(cls, value: str) -> "APIFormat":
        """Convert string to APIFormat enum with normalization."""
        normalized = value.lower().strip()
        mapping = {
            "openai": cls.OPENAI_CHAT_COMPLETION,
            "openai_chat": cls.OPENAI_CHAT_COMPLETION,
            "openai/chat_completions": cls.OPENAI_CHAT_COMPLETION,
            "openai_responses": cls.OPENAI_RESPONSES,
            "openai/responses": cls.OPENAI_RESPONSES,
            "anthropic": cls.ANTHROPIC_MESSAGE,
            "anthropic_messages": cls.ANTHROPIC_MESSAGE,
            "anthropic/messages": cls.ANTHROPIC_MESSAGE,
            "gemini": cls.GEMINI_CONTENTS,
            "gemini/contents": cls.GEMINI_CONTENTS,
        }
        if normalized in mapping:
            return mapping[normalized]
        raise ValueError(f"Unknown API format: {value}")
