"""
Reasoning effort / thinking budget conversion.

Vendors describe reasoning either qualitatively (OpenAI `reasoning_effort`)
or as a token budget (Anthropic `thinking.budget_tokens`, Gemini
`thinkingBudget`). Both directions go through a monotonic bucket table taken
from settings, which a per-upstream mapping may override.
"""

from typing import Dict, Optional

from protocol_transformer.config import get_settings

EFFORT_NONE = "none"
EFFORT_LOW = "low"
EFFORT_MEDIUM = "medium"
EFFORT_HIGH = "high"


def effort_to_budget(effort: str, overrides: Optional[Dict[str, int]] = None) -> int:
    """
    Thinking budget for a reasoning effort.

    Args:
        effort: Qualitative effort (low, medium, high, ...)
        overrides: Per-upstream effort -> budget mapping, consulted first

    Returns:
        int: Token budget; unknown efforts use the configured default
    """
    if overrides and effort in overrides:
        return overrides[effort]
    settings = get_settings()
    return settings.REASONING_EFFORT_BUDGETS.get(effort, settings.DEFAULT_REASONING_BUDGET)


def budget_to_effort(budget: int) -> str:
    """Bucket a token budget into low/medium/high (bounds are inclusive)."""
    thresholds = get_settings().REASONING_BUDGET_THRESHOLDS
    if budget <= thresholds.get(EFFORT_LOW, 5000):
        return EFFORT_LOW
    if budget <= thresholds.get(EFFORT_MEDIUM, 15000):
        return EFFORT_MEDIUM
    return EFFORT_HIGH


def budget_first(
    budget: Optional[int],
    effort: Optional[str],
    overrides: Optional[Dict[str, int]] = None,
) -> Optional[int]:
    """
    Resolve a thinking budget, preferring an explicit budget over the effort.

    Used where the upstream takes a numeric budget (Anthropic).
    """
    if budget is not None:
        return budget
    if effort:
        return effort_to_budget(effort, overrides)
    return None


# Gemini thought signatures ride in RedactedReasoningContent under this prefix,
# so other vendors can tell them apart from Anthropic redacted thinking data.
GEMINI_SIGNATURE_PREFIX = "gemini-thought-signature:"


def encode_gemini_signature(signature: Optional[str]) -> Optional[str]:
    if not signature:
        return None
    return GEMINI_SIGNATURE_PREFIX + signature


def decode_gemini_signature(value: Optional[str]) -> Optional[str]:
    """Return the Gemini thought signature held in `value`, or None."""
    if not value or not value.startswith(GEMINI_SIGNATURE_PREFIX):
        return None
    return value[len(GEMINI_SIGNATURE_PREFIX):] or None


def is_anthropic_redacted(value: Optional[str]) -> bool:
    """True when `value` is Anthropic redacted thinking data rather than a Gemini signature."""
    return bool(value) and not value.startswith(GEMINI_SIGNATURE_PREFIX)


# OpenAI Responses encrypted reasoning rides in ReasoningSignature under this prefix.
OPENAI_ENCRYPTED_PREFIX = "openai-encrypted-content:"


def encode_openai_encrypted(content: Optional[str]) -> Optional[str]:
    if not content:
        return None
    return OPENAI_ENCRYPTED_PREFIX + content


def decode_openai_encrypted(value: Optional[str]) -> Optional[str]:
    """Return the OpenAI encrypted reasoning held in `value`, or None."""
    if not value or not value.startswith(OPENAI_ENCRYPTED_PREFIX):
        return None
    return value[len(OPENAI_ENCRYPTED_PREFIX):] or None


def is_anthropic_signature(value: Optional[str]) -> bool:
    """True when `value` is an Anthropic thinking signature rather than another vendor's token."""
    return bool(value) and not value.startswith((OPENAI_ENCRYPTED_PREFIX, GEMINI_SIGNATURE_PREFIX))
